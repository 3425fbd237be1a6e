import logging
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from agentskan.application.ports import LedgerStore
from agentskan.application.scan_ledger import DEFAULT_CAPACITY
from agentskan.infrastructure.database import PostgresLedgerStore
from agentskan.infrastructure.readme_analyzer import DEFAULT_MODEL
from agentskan.infrastructure.redis_store import RedisLedgerStore

logger = logging.getLogger(__name__)


def _normalise_database_url(url: Optional[str]) -> Optional[str]:
    # The ledger runs on the async engine, which needs the asyncpg driver
    if url and url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    if url and url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    return url


class Settings(BaseModel):
    """Runtime configuration, read from the environment (and a .env file if present)."""
    model_config = ConfigDict(frozen=True)

    github_token: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_MODEL
    redis_url: Optional[str] = None
    database_url: Optional[str] = None
    ledger_capacity: int = Field(default=DEFAULT_CAPACITY, ge=1)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        if environ is None:
            # Load environment variables from .env file
            load_dotenv()
            environ = os.environ

        capacity = environ.get("SCAN_LEDGER_CAPACITY")
        return cls(
            github_token=environ.get("GITHUB_TOKEN") or None,
            openai_api_key=environ.get("OPENAI_API_KEY") or None,
            openai_model=environ.get("OPENAI_MODEL") or DEFAULT_MODEL,
            redis_url=environ.get("REDIS_URL") or environ.get("UPSTASH_REDIS_URL") or None,
            database_url=_normalise_database_url(environ.get("DATABASE_URL") or None),
            ledger_capacity=int(capacity) if capacity else DEFAULT_CAPACITY,
            log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
        )


def build_ledger_store(settings: Settings) -> Optional[LedgerStore]:
    """
    Picks the ledger backend: Redis first, then PostgreSQL. Returns None when
    neither is configured, which leaves the ledger in its no-op mode.
    """
    if settings.redis_url:
        logger.info("Using Redis scan ledger.")
        return RedisLedgerStore(url=settings.redis_url)

    if settings.database_url:
        logger.info("Using PostgreSQL scan ledger.")
        return PostgresLedgerStore(db_url=settings.database_url)

    logger.warning("Neither REDIS_URL nor DATABASE_URL is set; scans will not be recorded.")
    return None
