import pytest
from sqlalchemy import text

from db.utils import build_engine_from_dsn
from init import initialize_app


def test_initialize_app_prepares_dirs_and_schema(tmp_path):
    upload_dir = tmp_path / "uploads"
    engine = build_engine_from_dsn(f"sqlite:///{(tmp_path / 'games.db').as_posix()}")

    built = initialize_app(
        ensure_dirs=lambda: upload_dir.mkdir(),
        connection_factory=lambda: engine,
        build_services=lambda db: ("services", db),
    )

    assert built == ("services", engine)
    assert upload_dir.is_dir()
    with engine.sa_connection() as conn:
        tables = {row[0] for row in conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'table'"))}
    assert {"games", "user_games"} <= tables
    engine.dispose()


def test_initialize_app_disposes_engine_when_schema_fails():
    disposed = []

    class BrokenEngine:
        dialect_name = "sqlite"

        def begin(self):
            raise RuntimeError("database offline")

        def dispose(self):
            disposed.append(True)

    with pytest.raises(RuntimeError):
        initialize_app(
            ensure_dirs=lambda: None,
            connection_factory=BrokenEngine,
            build_services=lambda db: pytest.fail("services must not be built"),
        )

    assert disposed == [True]
