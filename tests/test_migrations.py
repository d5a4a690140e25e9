#tests/test_migrations.py

"""Test that the alembic migration builds the schema the ORM expects."""

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from promotion_engine.infrastructure.sql.database import Base, create_db_engine, get_session_factory
from promotion_engine.infrastructure.sql.ledger import SqlVersionLedger

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def migrated_engine(sqlite_url):
    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", sqlite_url)

    command.upgrade(cfg, "head")

    engine = create_db_engine(sqlite_url)
    yield engine
    engine.dispose()


@pytest.mark.parametrize("table", ["version_ledger", "version_ledger_history"])
def test_columns_match_models(migrated_engine, table):
    inspector = inspect(migrated_engine)
    pk = inspector.get_pk_constraint(table)["constrained_columns"]
    migrated = {c["name"]: c["nullable"] for c in inspector.get_columns(table) if c["name"] not in pk}

    model = Base.metadata.tables[table]
    declared = {c.name: c.nullable for c in model.columns if not c.primary_key}

    assert pk == [c.name for c in model.primary_key.columns]
    assert migrated == declared


def test_constraints_and_indexes_match_models(migrated_engine):
    inspector = inspect(migrated_engine)

    unique = inspector.get_unique_constraints("version_ledger")
    indexes = inspector.get_indexes("version_ledger_history")

    assert [(u["name"], u["column_names"]) for u in unique] == [
        ("uq_version_ledger_pair", ["application", "target"])
    ]
    assert [(i["name"], i["column_names"]) for i in indexes] == [
        ("idx_version_ledger_history_pair", ["application", "target"])
    ]
    assert "alembic_version" in inspector.get_table_names()


def test_ledger_runs_on_migrated_schema(migrated_engine, make_release):
    ledger = SqlVersionLedger(get_session_factory(migrated_engine))
    first = make_release("v1.0.0", days=1)

    assert ledger.compare_and_set("my-app", "prod", None, first, run_id="run-1")
    assert not ledger.compare_and_set("my-app", "prod", None, make_release("v1.1.0", days=2))
    assert ledger.compare_and_set("my-app", "prod", "v1.0.0", make_release("v1.1.0", days=2))

    assert ledger.get("my-app", "prod").release_tag == "v1.1.0"
    assert [e.release_tag for e in ledger.history("my-app", "prod")] == ["v1.0.0", "v1.1.0"]
