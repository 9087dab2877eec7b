"""
Migration Runner - applies Alembic migrations when the API starts.

Enabled with RUN_MIGRATIONS_ON_STARTUP; deployments that run
`alembic upgrade head` themselves leave it off.
"""

from pathlib import Path

from sqlalchemy import Engine, create_engine

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from qafala.config import settings
from qafala.observability.logging import get_logger

logger = get_logger(__name__)

ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"

_SYNC_DRIVERS = {"+asyncpg": "+psycopg2", "+aiosqlite": ""}


def sync_database_url(url: str) -> str:
    """Alembic runs synchronously: swap async driver names for sync ones."""
    for async_driver, sync_driver in _SYNC_DRIVERS.items():
        url = url.replace(async_driver, sync_driver)
    return url


def _get_current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    return ScriptDirectory.from_config(alembic_cfg).get_current_head()


def run_migrations() -> None:
    """Upgrade to head when the schema is behind; no-op when current."""
    if not ALEMBIC_INI_PATH.exists():
        logger.warning(
            "migrations_skipped", reason="alembic_ini_missing", path=str(ALEMBIC_INI_PATH)
        )
        return

    sync_url = sync_database_url(settings.database_url)
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))

    try:
        engine = create_engine(sync_url)
        try:
            current = _get_current_revision(engine)
            head = _get_head_revision(alembic_cfg)
            if current == head:
                logger.info("schema_up_to_date", revision=current)
                return

            logger.info("migrations_started", from_revision=current, to_revision=head)
            command.upgrade(alembic_cfg, "head")
            logger.info("migrations_completed", revision=_get_current_revision(engine))
        finally:
            engine.dispose()
    except Exception as e:
        logger.error("migrations_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
