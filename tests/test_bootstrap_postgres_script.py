import importlib.util
import sys
from pathlib import Path

import pytest

SCRIPT_PATH = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_postgres.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("bootstrap_postgres", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def script(monkeypatch):
    for name in (
        "POSTGRES_SUPERUSER",
        "POSTGRES_SUPERUSER_PASSWORD",
        "PGPASSWORD",
        "DEVCONTEXT_DB_NAME",
        "DEVCONTEXT_DB_USER",
        "DEVCONTEXT_PG_SCHEMA",
        "DEVCONTEXT_BOOTSTRAP_DRY_RUN",
    ):
        monkeypatch.delenv(name, raising=False)
    return _load_script()


class _FakeSQL:
    class SQL(str):
        def format(self, *parts):
            text = str(self)
            for part in parts:
                text = text.replace("{}", str(part), 1)
            return _FakeSQL.SQL(text)

    class Identifier(str):
        def __str__(self):
            return f'"{str.__str__(self)}"'

    class Literal(str):
        def __str__(self):
            return f"'{str.__str__(self)}'"


class _FakeCursor:
    def __init__(self, existing=()):
        self.statements = []
        self._existing = set(existing)
        self._last = None

    def execute(self, statement, params=None):
        self.statements.append(" ".join(str(statement).split()))
        self._last = params[0] if params else None

    def fetchone(self):
        return (1,) if self._last in self._existing else None


def test_dry_run_prints_plan_without_connecting(script, capsys, monkeypatch):
    monkeypatch.setenv("DEVCONTEXT_PG_SCHEMA", "devctx")
    monkeypatch.setattr(script, "_bootstrap_database", lambda config: pytest.fail("should not connect"))

    assert script.main(["--dry-run"]) == 0

    out = capsys.readouterr().out
    assert "[devcontext-bootstrap] DRY RUN: no changes will be applied." in out
    assert "Would ensure role 'devcontext' and database 'devcontext'." in out
    assert "Would ensure schema 'devctx' with tables: projects, kanban_columns, files, tasks." in out
    assert "Point DEVCONTEXT_PG_DSN at postgresql://devcontext@localhost:5432/devcontext (schema 'devctx')." in out


def test_dry_run_can_come_from_environment(script, monkeypatch):
    monkeypatch.setenv("DEVCONTEXT_BOOTSTRAP_DRY_RUN", "yes")

    config = script.BootstrapConfig.from_env(script.parse_args([]))

    assert config.dry_run is True
    assert config.conninfo("postgres")["user"] == "postgres"


def test_role_and_database_are_created_when_missing(script):
    config = script.BootstrapConfig.from_env(script.parse_args([]))
    cur = _FakeCursor()

    script._ensure_role(cur, _FakeSQL, config)
    script._ensure_database(cur, _FakeSQL, config)

    assert "CREATE ROLE \"devcontext\" LOGIN PASSWORD 'devcontext_password'" in cur.statements
    assert "CREATE DATABASE \"devcontext\" WITH OWNER \"devcontext\" ENCODING 'UTF8'" in cur.statements


def test_existing_role_is_altered_and_database_kept(script):
    config = script.BootstrapConfig.from_env(script.parse_args([]))
    cur = _FakeCursor(existing={"devcontext"})

    script._ensure_role(cur, _FakeSQL, config)
    script._ensure_database(cur, _FakeSQL, config)

    assert any(s.startswith('ALTER ROLE "devcontext"') for s in cur.statements)
    assert not any(s.startswith("CREATE DATABASE") for s in cur.statements)


def test_tables_are_created_in_schema(script):
    config = script.BootstrapConfig.from_env(script.parse_args([]))
    cur = _FakeCursor()

    script._ensure_tables(cur, _FakeSQL, config)

    assert cur.statements[0] == 'CREATE SCHEMA IF NOT EXISTS "public"'
    assert any(s.startswith("CREATE TABLE IF NOT EXISTS tasks") for s in cur.statements)
    assert 'GRANT ALL PRIVILEGES ON TABLE "public"."kanban_columns" TO "devcontext"' in cur.statements


def test_connection_failure_reports_password_hint(script, capsys, monkeypatch):
    class _FailingPsycopg:
        @staticmethod
        def connect(**kwargs):
            raise RuntimeError("fe_sendauth: no password supplied")

    monkeypatch.setattr(script, "_ensure_psycopg", lambda: (_FailingPsycopg, _FakeSQL))

    assert script.main([]) == 1

    err = capsys.readouterr().err
    assert "ERROR: fe_sendauth: no password supplied" in err
    assert "Hint: set POSTGRES_SUPERUSER_PASSWORD or PGPASSWORD." in err
