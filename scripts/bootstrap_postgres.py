#!/usr/bin/env python3
"""Create the PostgreSQL role, database, schema and tables used by DevContext."""
from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from devcontext.persistence import SCHEMA_STATEMENTS

APP_TABLES = ("projects", "kanban_columns", "files", "tasks")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class BootstrapConfig:
    superuser: str
    superuser_db: str
    host: str
    port: str
    superuser_password: Optional[str]
    db_name: str
    db_user: str
    db_password: str
    db_schema: str
    dry_run: bool

    @classmethod
    def from_env(cls, args: argparse.Namespace) -> "BootstrapConfig":
        return cls(
            superuser=os.environ.get("POSTGRES_SUPERUSER", "postgres"),
            superuser_db=os.environ.get("POSTGRES_SUPERUSER_DB", "postgres"),
            host=os.environ.get("POSTGRES_SUPERUSER_HOST", "localhost"),
            port=os.environ.get("POSTGRES_SUPERUSER_PORT", "5432"),
            superuser_password=(
                os.environ.get("POSTGRES_SUPERUSER_PASSWORD") or os.environ.get("PGPASSWORD") or None
            ),
            db_name=os.environ.get("DEVCONTEXT_DB_NAME", "devcontext"),
            db_user=os.environ.get("DEVCONTEXT_DB_USER", "devcontext"),
            db_password=os.environ.get("DEVCONTEXT_DB_PASSWORD", "devcontext_password"),
            db_schema=(os.environ.get("DEVCONTEXT_PG_SCHEMA") or "public").strip() or "public",
            dry_run=args.dry_run or _env_bool("DEVCONTEXT_BOOTSTRAP_DRY_RUN"),
        )

    def conninfo(self, dbname: str) -> dict:
        return {
            "user": self.superuser,
            "password": self.superuser_password,
            "host": self.host,
            "port": self.port,
            "dbname": dbname,
        }

    def app_dsn(self) -> str:
        return f"postgresql://{self.db_user}@{self.host}:{self.port}/{self.db_name}"


class BootstrapError(RuntimeError):
    """Raised when bootstrapping fails."""


def _log(message: str) -> None:
    print(f"[devcontext-bootstrap] {message}")


def _log_error(message: str) -> None:
    print(f"[devcontext-bootstrap] ERROR: {message}", file=sys.stderr)


def _ensure_psycopg():
    try:
        import psycopg
        from psycopg import sql
    except ImportError as exc:
        _log_error("psycopg is required: pip install 'psycopg[binary]'")
        raise SystemExit(1) from exc
    return psycopg, sql


def _ensure_role(cur, sql, config: BootstrapConfig) -> None:
    cur.execute("SELECT 1 FROM pg_roles WHERE rolname = %s", (config.db_user,))
    verb = "ALTER ROLE {} WITH LOGIN PASSWORD {}" if cur.fetchone() else "CREATE ROLE {} LOGIN PASSWORD {}"
    _log(f"{'Updating' if verb.startswith('ALTER') else 'Creating'} role '{config.db_user}'...")
    cur.execute(sql.SQL(verb).format(sql.Identifier(config.db_user), sql.Literal(config.db_password)))


def _ensure_database(cur, sql, config: BootstrapConfig) -> None:
    cur.execute("SELECT 1 FROM pg_database WHERE datname = %s", (config.db_name,))
    if cur.fetchone():
        _log(f"Database '{config.db_name}' already exists.")
    else:
        _log(f"Creating database '{config.db_name}' owned by '{config.db_user}'...")
        cur.execute(
            sql.SQL("CREATE DATABASE {} WITH OWNER {} ENCODING 'UTF8'").format(
                sql.Identifier(config.db_name), sql.Identifier(config.db_user)
            )
        )
    cur.execute(
        sql.SQL("GRANT ALL PRIVILEGES ON DATABASE {} TO {}").format(
            sql.Identifier(config.db_name), sql.Identifier(config.db_user)
        )
    )


def _ensure_tables(cur, sql, config: BootstrapConfig) -> None:
    schema = sql.Identifier(config.db_schema)
    _log(f"Ensuring schema '{config.db_schema}'...")
    cur.execute(sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(schema))
    cur.execute(sql.SQL("GRANT USAGE, CREATE ON SCHEMA {} TO {}").format(schema, sql.Identifier(config.db_user)))
    cur.execute(sql.SQL("SET search_path TO {}").format(schema))
    for statement in SCHEMA_STATEMENTS:
        cur.execute(statement)
    for table in APP_TABLES:
        cur.execute(
            sql.SQL("GRANT ALL PRIVILEGES ON TABLE {}.{} TO {}").format(
                schema, sql.Identifier(table), sql.Identifier(config.db_user)
            )
        )
    _log(f"Ensured tables: {', '.join(APP_TABLES)}.")


def _bootstrap_database(config: BootstrapConfig) -> None:
    psycopg, sql = _ensure_psycopg()
    _log(f"Connecting as '{config.superuser}' to {config.host}:{config.port}...")
    try:
        with psycopg.connect(**config.conninfo(config.superuser_db)) as conn:
            conn.autocommit = True
            with conn.cursor() as cur:
                _ensure_role(cur, sql, config)
                _ensure_database(cur, sql, config)
        with psycopg.connect(**config.conninfo(config.db_name)) as conn:
            conn.autocommit = True
            with conn.cursor() as cur:
                _ensure_tables(cur, sql, config)
    except Exception as exc:
        message = str(exc)
        if config.superuser_password is None and "password" in message.lower():
            message += "\nHint: set POSTGRES_SUPERUSER_PASSWORD or PGPASSWORD."
        raise BootstrapError(message) from exc


def _dry_run(config: BootstrapConfig) -> None:
    _log("DRY RUN: no changes will be applied.")
    _log(f"Would connect as '{config.superuser}' to '{config.superuser_db}' on {config.host}:{config.port}.")
    _log(f"Would ensure role '{config.db_user}' and database '{config.db_name}'.")
    _log(f"Would ensure schema '{config.db_schema}' with tables: {', '.join(APP_TABLES)}.")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the planned operations only (or set DEVCONTEXT_BOOTSTRAP_DRY_RUN=1).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    config = BootstrapConfig.from_env(parse_args(argv))
    try:
        if config.dry_run:
            _dry_run(config)
        else:
            _bootstrap_database(config)
    except BootstrapError as exc:
        _log_error(str(exc))
        return 1
    _log("PostgreSQL bootstrap complete.")
    _log(f"Point DEVCONTEXT_PG_DSN at {config.app_dsn()} (schema '{config.db_schema}').")
    return 0


if __name__ == "__main__":
    sys.exit(main())
