"""Alembic-style schema migrations and a lightweight psycopg runner.

The migration modules use Alembic's ``op`` API so they can run under a normal
Alembic environment. :func:`apply_migrations` executes them directly over a
psycopg connection for deployments and tests that do not carry one.
"""

from __future__ import annotations

import importlib
import logging
import os
from pathlib import Path
from typing import Any, Sequence

import psycopg
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent


class _PsycopgOperations:
    """Subset of Alembic's ``op`` helpers executed over psycopg."""

    def __init__(self, conn: psycopg.Connection):
        self._conn = conn
        self._dialect = postgresql.dialect()
        self._preparer = self._dialect.identifier_preparer
        # Shared so foreign keys can resolve tables created earlier in the run.
        self._metadata = sa.MetaData()

    def create_table(self, name: str, *columns: Any, **kwargs: Any) -> None:
        table = sa.Table(name, self._metadata, *columns, **kwargs)
        self._execute(sa.schema.CreateTable(table, if_not_exists=True))

    def drop_table(self, name: str, schema: str | None = None) -> None:
        table = sa.Table(name, sa.MetaData(), schema=schema)
        self._execute(sa.schema.DropTable(table, if_exists=True))

    def create_index(
        self,
        name: str,
        table_name: str,
        columns: Sequence[str],
        *,
        unique: bool = False,
        postgresql_where: Any | None = None,
        **_: Any,
    ) -> None:
        column_sql = ", ".join(self._preparer.quote(col) for col in columns)
        unique_sql = "UNIQUE " if unique else ""
        statement = f"CREATE {unique_sql}INDEX IF NOT EXISTS {self._preparer.quote(name)} "
        statement += f"ON {self._preparer.quote(table_name)} ({column_sql})"
        if postgresql_where is not None:
            compiled = postgresql_where.compile(
                dialect=self._dialect, compile_kwargs={"literal_binds": True}
            )
            statement += f" WHERE {compiled}"
        with self._conn.cursor() as cur:
            cur.execute(statement)

    def drop_index(self, name: str, **_: Any) -> None:
        with self._conn.cursor() as cur:
            cur.execute(f"DROP INDEX IF EXISTS {self._preparer.quote(name)}")

    def _execute(self, ddl: sa.schema.DDLElement) -> None:
        compiled = ddl.compile(dialect=self._dialect)
        with self._conn.cursor() as cur:
            cur.execute(str(compiled))


def apply_migrations(
    conn: psycopg.Connection, migrations_dir: Path | None = None
) -> list[str]:
    """Run pending migrations in order and return the ids applied."""

    migrations_dir = migrations_dir or MIGRATIONS_DIR
    migration_files = sorted(
        path for path in migrations_dir.glob("[0-9][0-9][0-9]_*.py") if path.is_file()
    )

    with conn.cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS supportdesk_migrations (
                id TEXT PRIMARY KEY,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
        cur.execute("SELECT id FROM supportdesk_migrations")
        applied = {row[0] for row in cur.fetchall()}
    conn.commit()

    newly_applied: list[str] = []
    for path in migration_files:
        migration_id = path.stem
        if migration_id in applied:
            continue
        module = importlib.import_module(f"{__name__}.{path.stem}")
        original_op = getattr(module, "op", None)
        module.op = _PsycopgOperations(conn)
        try:
            module.upgrade()
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO supportdesk_migrations (id)
                    VALUES (%s)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    (migration_id,),
                )
        except Exception:
            conn.rollback()
            raise
        else:
            conn.commit()
            newly_applied.append(migration_id)
            logger.info("Applied migration %s", migration_id)
        finally:
            module.op = original_op
    return newly_applied


def main() -> None:
    """Apply migrations to ``DATABASE_URL``."""

    from dotenv import load_dotenv

    load_dotenv()
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise SystemExit("DATABASE_URL is not set")
    with psycopg.connect(database_url) as conn:
        applied = apply_migrations(conn)
    print(f"Applied {len(applied)} migration(s)")


if __name__ == "__main__":
    main()
