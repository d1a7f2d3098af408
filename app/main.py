import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from app.core.config import settings
from app.core.errors import ConversionError
from app.core.logging import configure_logging
from app.api.crypto import router as crypto_router
from app.api.admin import router as admin_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Crypto Conversion API", version="1.0.0")

@app.exception_handler(ConversionError)
async def conversion_error_handler(request: Request, exc: ConversionError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

app.include_router(crypto_router, tags=["crypto"])
app.include_router(admin_router, tags=["admin"])

# user_id (and role) are written into the signed session by the auth service
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SECRET_KEY,
    max_age=1800,  # 30 minutes
    same_site="lax",
    https_only=False # True in production
)

@app.get("/health")
def health():
    return {"status": "ok"}
