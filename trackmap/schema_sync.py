"""Startup schema reconciliation.

Brings an existing SQLite file up to the tables the models declare
without touching data already stored:

* no database file yet: create every table;
* existing file: drop leftover ``*_backup`` tables from interrupted
  migrations, then create each model table that is missing, one by one.

Existing tables are never dropped or altered. Failures are logged and
never stop the application from starting; a missing table then shows
up as ordinary query errors. Running it again is a no-op.

Can be run by hand::

    python -m trackmap.schema_sync
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path

from sqlalchemy import MetaData, Table, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from . import models  # noqa: F401  registers tables on Base.metadata
from .database import Base

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = "_backup"


@dataclass
class SchemaReport:
    """Outcome of one reconciliation run."""

    created: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.dropped)


def database_exists(engine: Engine) -> bool:
    """
    Tell whether the engine points at an already existing store.

    In-memory SQLite databases and missing files count as new stores.
    Non-SQLite backends are always treated as existing.
    """
    url = engine.url
    if url.get_backend_name() != "sqlite":
        return True
    if not url.database or url.database == ":memory:":
        return False
    return Path(url.database).exists()


def drop_backup_tables(engine: Engine) -> list[str]:
    """
    Drop tables left behind by a failed migration.

    Args:
        engine (Engine): Target database.

    Returns:
        list[str]: Names of the tables that were dropped.
    """
    names = [
        name
        for name in inspect(engine).get_table_names()
        if name.endswith(BACKUP_SUFFIX)
    ]
    if names:
        logger.info("Found %d backup tables, cleaning up", len(names))

    dropped = []
    for name in names:
        try:
            Table(name, MetaData()).drop(bind=engine, checkfirst=True)
        except SQLAlchemyError:
            logger.exception("Could not drop backup table %s", name)
            continue
        logger.info("Dropped table %s", name)
        dropped.append(name)
    return dropped


def create_missing_tables(engine: Engine, report: SchemaReport) -> None:
    existing = set(inspect(engine).get_table_names())
    logger.info("Existing tables: %s", sorted(existing))

    for table in Base.metadata.sorted_tables:
        if table.name in existing:
            logger.debug("%s table already exists", table.name)
            continue
        logger.info("Creating missing %s table", table.name)
        try:
            table.create(bind=engine, checkfirst=True)
        except SQLAlchemyError:
            logger.exception("Could not create table %s", table.name)
            report.failed.append(table.name)
            continue
        report.created.append(table.name)


def reconcile_schema(engine: Engine | None = None) -> SchemaReport:
    """
    Reconcile the persisted schema with the declared models.

    Args:
        engine (Engine | None): Target database; defaults to the
            application engine.

    Returns:
        SchemaReport: Tables created, dropped and failed during this run.
    """
    if engine is None:
        from .database import engine as app_engine

        engine = app_engine

    report = SchemaReport()
    try:
        if not database_exists(engine):
            logger.info("Creating new database")
            Base.metadata.create_all(bind=engine)
            report.created.extend(t.name for t in Base.metadata.sorted_tables)
            return report

        logger.info("Using existing database, checking for required tables")
        report.dropped.extend(drop_backup_tables(engine))
        create_missing_tables(engine, report)
        logger.info("Database schema check completed")
    except Exception:
        logger.exception("Schema reconciliation failed, continuing without changes")
    return report


if __name__ == "__main__":
    from .core import setup_logging

    setup_logging()
    result = reconcile_schema()
    logger.info(
        "created=%s dropped=%s failed=%s",
        result.created,
        result.dropped,
        result.failed,
    )
