"""Configuration from environment variables."""

from pydantic_settings import BaseSettings

# Substrings that mark a description as an internal movement of funds
DEFAULT_TRANSFER_KEYWORDS = [
    "TRANSFER",
    "TFR",
    "BR TO BR",
    "ONLINE BANKING",
    "E-TRANSFER",
    "ETRANSFER",
    "INTERAC",
    "PAYMENT",
    "WIRE",
    "FX",
    "FOREX",
    "CONVERSION",
    "LOAN",
    "LOC",
    "WITHDRAWAL",
    "DEPOSIT",
    "LINE OF CREDIT",
    "WWW TFR",
    "VIN0",
]


class Settings(BaseSettings):
    # PostgreSQL
    postgres_host: str = "postgresql.ledger.svc.cluster.local"
    postgres_port: int = 5432
    postgres_user: str = "app"
    postgres_password: str = ""
    postgres_db: str = "app"

    # Redis (run locks)
    redis_host: str = "redis-master.ledger.svc.cluster.local"
    redis_port: int = 6379
    redis_password: str = ""

    # Exchange rate service
    exchange_rate_api_url: str = "http://exchange-rates.ledger.svc.cluster.local"
    exchange_rate_api_path: str = "/functions/v1/get-exchange-rate"
    exchange_rate_api_key: str = ""
    rate_lookup_concurrency: int = 5

    # Detection defaults
    auto_link_threshold: int = 95
    date_tolerance_days: int = 3
    default_currency: str = "CAD"
    transfer_category_code: str = "bank_transfer"
    transfer_keywords: list[str] = DEFAULT_TRANSFER_KEYWORDS
    pairing_strategy: str = "greedy"  # greedy, optimal

    # Pending transfer tolerances when the record leaves them unset
    pending_tolerance_days: int = 5
    pending_tolerance_amount: str = "0.50"

    # Run serialization
    run_lock_enabled: bool = True
    run_lock_ttl_seconds: int = 300

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        """Synchronous database URL for Alembic."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_prefix = ""
        case_sensitive = False


settings = Settings()
