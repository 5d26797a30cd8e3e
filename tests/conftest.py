import sqlite3

import pytest

import db


@pytest.fixture
def conn():
    """In-memory SQLite database with the schema and seed rows in place."""
    c = sqlite3.connect(":memory:")
    c.row_factory = sqlite3.Row
    db.init_db(c)
    yield c
    c.close()


@pytest.fixture
def make_user(conn):
    def _make(username, *, display_name=None, email=None, is_admin=False):
        return db.create_user(
            conn,
            username=username,
            display_name=display_name or username.title(),
            email=email,
            salt_b64="c2FsdA==",
            password_hash_b64="aGFzaA==",
            is_admin=is_admin,
        )

    return _make
