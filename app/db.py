from sqlmodel import create_engine, Session
from sqlalchemy import event
import os
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL or os.getenv("DATABASE_URL")

if not DATABASE_URL:
    # Fallback construction from libpq-style variables
    host = os.getenv("PGHOST")
    db = os.getenv("PGDATABASE")
    user = os.getenv("PGUSER")
    password = os.getenv("PGPASSWORD")
    ssl_mode = os.getenv("PGSSLMODE", "require")

    DATABASE_URL = f"postgresql://{user}:{password}@{host}/{db}?sslmode={ssl_mode}"

# Read-only workload: small pool, aggressive liveness checks
engine = create_engine(
    DATABASE_URL,
    echo=False,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,  # Verify connections before use
    pool_recycle=300,  # Serverless Postgres drops idle connections
    pool_timeout=settings.DB_POOL_TIMEOUT,
    connect_args={
        "connect_timeout": 10,
        "keepalives": 1,
        "keepalives_idle": 30,
        "keepalives_interval": 10,
        "keepalives_count": 5,
    },
)


@event.listens_for(engine, "connect")
def set_statement_timeout(dbapi_connection, connection_record):
    """Bound every query so a slow aggregation surfaces as UpstreamTimeout."""
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute(f"SET statement_timeout = '{settings.DB_STATEMENT_TIMEOUT}'")
    except Exception as e:
        logger.warning(f"Could not set statement timeout: {e}")
    finally:
        cursor.close()


def get_session():
    with Session(engine) as session:
        yield session
