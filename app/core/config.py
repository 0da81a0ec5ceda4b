from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API Settings
    PROJECT_NAME: str = "Invoice Payments API"
    API_PREFIX: str = "/api"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Invoices, line items and payment reconciliation"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    # MongoDB
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "invoices"
    # Multi-document transactions need a replica set; standalone servers
    # fall back to compensating writes.
    MONGODB_USE_TRANSACTIONS: bool = False

    # Payments
    REJECT_PAYMENTS_ON_ARCHIVED: bool = False

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Rate limiting
    REDIS_URL: str = "redis://localhost:6379/0"
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WRITE_REQUESTS: int = 20
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

settings = Settings()
