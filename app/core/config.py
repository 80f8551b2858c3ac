from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "NFT Collection Explorer"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"  # "development", "staging" or "production"

    # Database (DATABASE_URL wins; PG* variables are the fallback)
    DATABASE_URL: str = ""
    DB_STATEMENT_TIMEOUT: str = "15s"  # Per-query budget before UpstreamTimeout
    DB_POOL_TIMEOUT: int = 10

    # Native chain asset (implicit currency, never a registered token)
    NATIVE_CURRENCY_SYMBOL: str = "ETN"
    NATIVE_CURRENCY_DECIMALS: int = 18

    # Pagination bounds
    ITEMS_DEFAULT_LIMIT: int = 24
    ITEMS_MAX_LIMIT: int = 48
    TOP_DEFAULT_LIMIT: int = 10
    TOP_MAX_LIMIT: int = 20
    COLLECTIONS_DEFAULT_LIMIT: int = 24
    COLLECTIONS_MIN_LIMIT: int = 6
    COLLECTIONS_MAX_LIMIT: int = 30

    # Short-lived response cache for high fan-out read endpoints
    RESPONSE_CACHE_TTL: int = 5  # seconds
    RESPONSE_CACHE_SIZE: int = 256

    # Upper bound on sale rows scanned by top-collection aggregation
    AGGREGATE_ROW_CAP: int = 200_000

    # Sync route handlers run in AnyIO worker threads; cap them to the DB pool headroom
    THREADPOOL_MAX_WORKERS: int = 15

    # Frontend URL for CORS
    FRONTEND_URL: str = "http://localhost:3000"

    # Error tracking
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
