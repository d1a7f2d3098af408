from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    LOG_LEVEL: str = "INFO"

    # Conversion pair and the stable tokens pegged 1:1 to the base currency
    BASE_CURRENCY: str = "USD"
    FIAT_CURRENCY: str = "NGN"
    SUPPORTED_TOKENS: list[str] = ["USDT", "USDC"]
    TOKEN_USD_PEG: Decimal = Decimal("1.0")
    QUOTE_TTL_SECONDS: int = 300

    # Settlement transaction
    SETTLEMENT_MAX_ATTEMPTS: int = 3
    SETTLEMENT_BACKOFF_BASE_SECONDS: float = 0.1
    SETTLEMENT_LOCK_TIMEOUT_MS: int = 10_000
    SETTLEMENT_STATEMENT_TIMEOUT_MS: int = 20_000

    HISTORY_DEFAULT_LIMIT: int = 20
    HISTORY_MAX_LIMIT: int = 100
    STALE_CONVERSION_MINUTES: int = 15

    # This configures how the settings are loaded
    model_config = SettingsConfigDict(env_file=".env")

# Create a single instance to be used across the app
settings = Settings()
