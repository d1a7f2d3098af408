from typing import Annotated
from uuid import UUID

from passlib.context import CryptContext
from fastapi import Depends, Request, HTTPException, status
from sqlalchemy.orm import Session

from app.core.errors import InvalidPin
from app.db.session import get_db
from app.models.user import User

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_pin(pin: str) -> str:
    return pwd_context.hash(pin)


def verify_pin(pin: str, hashed: str) -> bool:
    return pwd_context.verify(pin, hashed)


class TransactionPinVerifier:
    def __init__(self, db: Session):
        self.db = db

    def verify(self, user_id: UUID, pin: str) -> None:
        user = self.db.get(User, user_id)
        if user is None or not user.hashed_pin or not pin:
            raise InvalidPin()
        if not verify_pin(pin, user.hashed_pin):
            raise InvalidPin()

# Define a reusable type
db_dependency = Annotated[Session, Depends(get_db)]

# The session cookie is written by the auth service at login
def require_user(request: Request) -> UUID:
    user_id = request.session.get("user_id")
    if not user_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Not authenticated")
    try:
        return user_id if isinstance(user_id, UUID) else UUID(str(user_id))
    except ValueError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid session user_id")


def require_admin(request: Request, user_id: UUID = Depends(require_user)) -> UUID:
    if request.session.get("role") != "admin":
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Admin access required")
    return user_id
