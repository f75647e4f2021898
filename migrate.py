from pathlib import Path
import logging
import sys

from sqlalchemy import text
from sqlalchemy.engine import Engine

from db import make_engine

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def _statements(sql: str):
    for stmt in sql.split(";"):
        stmt = stmt.strip()
        if stmt:
            yield stmt


def reset_db(engine: Engine):
    """
    Drop the tables this service owns.
    DESTRUCTIVE. Intended for dev/test only.
    """
    with engine.begin() as conn:
        for table in ("votes", "opportunities", "creators"):
            conn.execute(text(f"DROP TABLE IF EXISTS {table}"))
    print("database reset complete")


def run_migrations(engine: Engine, directory: Path = MIGRATIONS_DIR) -> int:
    sql_files = sorted(directory.glob("*.sql"))
    if not sql_files:
        logger.warning("no migrations found in %s", directory)
        return 0

    applied = 0
    with engine.begin() as conn:
        for p in sql_files:
            sql = p.read_text(encoding="utf-8")
            # every statement is CREATE ... IF NOT EXISTS, so re-running is safe
            for stmt in _statements(sql):
                conn.execute(text(stmt))
            applied += 1
            logger.info("applied %s", p.name)
    return applied


def main():
    """
    Usage:
      python migrate.py        # run migrations
      python migrate.py reset  # drop tables, then exit
    """
    from config import load_settings

    logging.basicConfig(level=logging.INFO)
    engine = make_engine(load_settings().database_url)
    if len(sys.argv) > 1 and sys.argv[1] == "reset":
        reset_db(engine)
        return

    run_migrations(engine)


if __name__ == "__main__":
    main()
