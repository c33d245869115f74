import pytest

import backend.config as config
import database.db as db


@pytest.fixture()
def db_path(tmp_path, monkeypatch):
    db_path = tmp_path / "rollcall_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", db_path)
    monkeypatch.setattr(db, "DB_PATH", db_path)

    db.create_tables()
    return db_path
