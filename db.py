from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError as SAIntegrityError

import game_logic
import security

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, str] = {
    "team_rows": "Home",
    "team_columns": "Away",
    "board_locked": "0",
    "row_digits_json": "",
    "col_digits_json": "",
}

_DB_PATH_CACHE: Path | None = None
_ENGINE_CACHE: Engine | None = None


def _now_ts() -> int:
    return int(time.time())


def db_path() -> Path:
    global _DB_PATH_CACHE
    if _DB_PATH_CACHE is not None:
        return _DB_PATH_CACHE

    env_path = os.getenv("SUPERBOWL_SQUARES_DB_PATH")
    if env_path:
        p = Path(env_path).expanduser()
        if not p.is_absolute():
            p = (Path(__file__).resolve().parent / p)
        try:
            _DB_PATH_CACHE = p.resolve()
        except FileNotFoundError:
            _DB_PATH_CACHE = p.parent.resolve() / p.name
        return _DB_PATH_CACHE

    # Default path for local dev, but this may be read-only on hosted platforms.
    _DB_PATH_CACHE = Path(__file__).resolve().parent / "data" / "squares.db"
    return _DB_PATH_CACHE


def _resolve_writable_db_path() -> Path:
    if os.getenv("SUPERBOWL_SQUARES_DB_PATH"):
        return db_path()

    candidates = [
        Path(__file__).resolve().parent / "data" / "squares.db",
        Path.home() / ".superbowl_squares" / "squares.db",
        Path("/tmp") / "superbowl_squares.db",
    ]
    for p in candidates:
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            return p
        except OSError:
            continue
    return candidates[-1]


def connect() -> sqlite3.Connection:
    global _DB_PATH_CACHE
    path = _resolve_writable_db_path()
    _DB_PATH_CACHE = path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def db() -> Iterator[Any]:
    if database_url():
        engine = _get_engine()
        with engine.begin() as conn:
            yield conn
        return

    conn = connect()
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def database_url() -> str | None:
    return (
        os.getenv("DATABASE_URL")
        or os.getenv("NEON_DATABASE_URL")
        or os.getenv("POSTGRES_URL")
        or os.getenv("POSTGRES_URL_NON_POOLING")
    )


def _normalize_database_url(url: str) -> str:
    # Neon commonly provides `postgres://...` which SQLAlchemy expects as `postgresql://...`.
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]

    parsed = urlparse(url)
    q = dict(parse_qsl(parsed.query, keep_blank_values=True))
    q.setdefault("sslmode", "require")
    return urlunparse(parsed._replace(query=urlencode(q)))


def _get_engine() -> Engine:
    global _ENGINE_CACHE
    if _ENGINE_CACHE is not None:
        return _ENGINE_CACHE
    url = database_url()
    if not url:
        raise RuntimeError("No DATABASE_URL configured.")
    _ENGINE_CACHE = create_engine(_normalize_database_url(url), pool_pre_ping=True)
    return _ENGINE_CACHE


def _is_sqlite_conn(conn: Any) -> bool:
    return isinstance(conn, sqlite3.Connection)


def _execute(conn: Any, sql: str, params: dict[str, Any] | None = None) -> Any:
    if _is_sqlite_conn(conn):
        return conn.execute(sql, params or {})
    return conn.execute(text(sql), params or {})


def _fetchone(conn: Any, sql: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
    if _is_sqlite_conn(conn):
        row = conn.execute(sql, params or {}).fetchone()
        return dict(row) if row else None
    row = conn.execute(text(sql), params or {}).mappings().fetchone()
    return dict(row) if row else None


def _fetchall(conn: Any, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    if _is_sqlite_conn(conn):
        return [dict(r) for r in conn.execute(sql, params or {}).fetchall()]
    return [dict(r) for r in conn.execute(text(sql), params or {}).mappings().fetchall()]


_SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  username TEXT NOT NULL UNIQUE,
  display_name TEXT NOT NULL,
  email TEXT,
  email_verified INTEGER NOT NULL DEFAULT 0,
  email_verified_at_ts INTEGER,
  salt_b64 TEXT NOT NULL,
  password_hash_b64 TEXT NOT NULL,
  is_admin INTEGER NOT NULL DEFAULT 0,
  created_at_ts INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS squares (
  quarter INTEGER NOT NULL,
  id INTEGER NOT NULL,
  owner_user_id INTEGER,
  updated_at_ts INTEGER NOT NULL,
  PRIMARY KEY (quarter, id),
  FOREIGN KEY(owner_user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS settings (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at_ts INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS scores (
  quarter INTEGER PRIMARY KEY,
  home_score INTEGER NOT NULL,
  away_score INTEGER NOT NULL,
  updated_at_ts INTEGER NOT NULL,
  updated_by_user_id INTEGER,
  FOREIGN KEY(updated_by_user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS verification_codes (
  user_id INTEGER PRIMARY KEY,
  code TEXT NOT NULL,
  email TEXT NOT NULL,
  expires_at_ts INTEGER NOT NULL,
  attempts INTEGER NOT NULL DEFAULT 0,
  created_at_ts INTEGER NOT NULL,
  FOREIGN KEY(user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS audit_log (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  created_at_ts INTEGER NOT NULL,
  actor_user_id INTEGER,
  action TEXT NOT NULL,
  details_json TEXT NOT NULL,
  FOREIGN KEY(actor_user_id) REFERENCES users(id)
);
"""

_POSTGRES_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
      id BIGSERIAL PRIMARY KEY,
      username TEXT NOT NULL UNIQUE,
      display_name TEXT NOT NULL,
      email TEXT NULL,
      email_verified BOOLEAN NOT NULL DEFAULT FALSE,
      email_verified_at_ts BIGINT NULL,
      salt_b64 TEXT NOT NULL,
      password_hash_b64 TEXT NOT NULL,
      is_admin BOOLEAN NOT NULL DEFAULT FALSE,
      created_at_ts BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS squares (
      quarter INTEGER NOT NULL,
      id INTEGER NOT NULL,
      owner_user_id BIGINT NULL REFERENCES users(id),
      updated_at_ts BIGINT NOT NULL,
      PRIMARY KEY (quarter, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS settings (
      key TEXT PRIMARY KEY,
      value TEXT NOT NULL,
      updated_at_ts BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scores (
      quarter INTEGER PRIMARY KEY,
      home_score INTEGER NOT NULL,
      away_score INTEGER NOT NULL,
      updated_at_ts BIGINT NOT NULL,
      updated_by_user_id BIGINT NULL REFERENCES users(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS verification_codes (
      user_id BIGINT PRIMARY KEY REFERENCES users(id),
      code TEXT NOT NULL,
      email TEXT NOT NULL,
      expires_at_ts BIGINT NOT NULL,
      attempts INTEGER NOT NULL DEFAULT 0,
      created_at_ts BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
      id BIGSERIAL PRIMARY KEY,
      created_at_ts BIGINT NOT NULL,
      actor_user_id BIGINT NULL REFERENCES users(id),
      action TEXT NOT NULL,
      details_json TEXT NOT NULL
    )
    """,
)


def init_db(conn: Any) -> None:
    if _is_sqlite_conn(conn):
        conn.executescript(_SQLITE_SCHEMA)
    else:
        for ddl in _POSTGRES_SCHEMA:
            _execute(conn, ddl)

    now = _now_ts()
    insert_prefix = "INSERT OR IGNORE INTO" if _is_sqlite_conn(conn) else "INSERT INTO"
    conflict_suffix = "" if _is_sqlite_conn(conn) else "ON CONFLICT DO NOTHING"

    # One 100-square board per quarter
    existing_row = _fetchone(conn, "SELECT COUNT(*) AS c FROM squares")
    existing = int(existing_row["c"]) if existing_row else 0
    if existing < len(game_logic.QUARTERS) * 100:
        rows = [{"q": q, "id": i, "ts": now} for q in game_logic.QUARTERS for i in range(100)]
        sql = (
            f"{insert_prefix} squares (quarter, id, owner_user_id, updated_at_ts) "
            f"VALUES (:q, :id, NULL, :ts) {conflict_suffix}"
        )
        if _is_sqlite_conn(conn):
            conn.executemany(sql, rows)
        else:
            conn.execute(text(sql), rows)

    for k, v in DEFAULT_SETTINGS.items():
        _execute(
            conn,
            f"{insert_prefix} settings (key, value, updated_at_ts) VALUES (:k, :v, :ts) {conflict_suffix}",
            {"k": k, "v": v, "ts": now},
        )

    for q in game_logic.QUARTERS:
        _execute(
            conn,
            f"""
            {insert_prefix} scores (quarter, home_score, away_score, updated_at_ts, updated_by_user_id)
            VALUES (:q, 0, 0, :ts, NULL) {conflict_suffix}
            """,
            {"q": q, "ts": now},
        )


def get_setting(conn: Any, key: str) -> str:
    row = _fetchone(conn, "SELECT value FROM settings WHERE key = :key", {"key": key})
    if not row:
        return DEFAULT_SETTINGS.get(key, "")
    return str(row["value"])


def set_setting(conn: Any, key: str, value: str) -> None:
    _execute(
        conn,
        """
        INSERT INTO settings (key, value, updated_at_ts)
        VALUES (:key, :value, :ts)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at_ts = excluded.updated_at_ts
        """,
        {"key": key, "value": value, "ts": _now_ts()},
    )


def get_board_digits(conn: Any) -> tuple[list[int] | None, list[int] | None]:
    return (
        game_logic.parse_digits(get_setting(conn, "row_digits_json")),
        game_logic.parse_digits(get_setting(conn, "col_digits_json")),
    )


def log_action(conn: Any, actor_user_id: int | None, action: str, details: dict[str, Any]) -> None:
    _execute(
        conn,
        "INSERT INTO audit_log (created_at_ts, actor_user_id, action, details_json) VALUES (:ts, :actor, :action, :details)",
        {
            "ts": _now_ts(),
            "actor": actor_user_id,
            "action": action,
            "details": json.dumps(details, separators=(",", ":")),
        },
    )


@dataclass(frozen=True)
class User:
    id: int
    username: str
    display_name: str
    is_admin: bool
    email: str | None = None
    email_verified: bool = False


def any_users_exist(conn: Any) -> bool:
    row = _fetchone(conn, "SELECT 1 AS ok FROM users LIMIT 1")
    return bool(row and row.get("ok"))


def get_user_by_username(conn: Any, username: str) -> dict[str, Any] | None:
    return _fetchone(conn, "SELECT * FROM users WHERE username = :username", {"username": username})


def get_user(conn: Any, user_id: int) -> User | None:
    row = _fetchone(
        conn,
        "SELECT id, username, display_name, is_admin, email, email_verified FROM users WHERE id = :id",
        {"id": user_id},
    )
    if not row:
        return None
    return User(
        id=int(row["id"]),
        username=str(row["username"]),
        display_name=str(row["display_name"]),
        is_admin=bool(row["is_admin"]),
        email=row.get("email") or None,
        email_verified=bool(row.get("email_verified")),
    )


def create_user(
    conn: Any,
    *,
    username: str,
    display_name: str,
    salt_b64: str,
    password_hash_b64: str,
    is_admin: bool,
    email: str | None = None,
) -> int:
    params = {
        "username": username.strip().lower(),
        "display_name": display_name.strip(),
        "email": (email or "").strip().lower() or None,
        "salt_b64": salt_b64,
        "password_hash_b64": password_hash_b64,
        "is_admin": bool(is_admin),
        "ts": _now_ts(),
    }
    sql = """
        INSERT INTO users (username, display_name, email, salt_b64, password_hash_b64, is_admin, created_at_ts)
        VALUES (:username, :display_name, :email, :salt_b64, :password_hash_b64, :is_admin, :ts)
    """
    if _is_sqlite_conn(conn):
        cur = conn.execute(sql, {**params, "is_admin": int(bool(is_admin))})
        return int(cur.lastrowid)

    row = _fetchone(conn, sql + " RETURNING id", params)
    if not row:
        raise RuntimeError("Failed to create user.")
    return int(row["id"])


def set_user_email(conn: Any, user_id: int, email: str) -> None:
    _execute(
        conn,
        """
        UPDATE users
        SET email = :email, email_verified = :unverified, email_verified_at_ts = NULL
        WHERE id = :id
        """,
        {"email": email.strip().lower(), "unverified": 0 if _is_sqlite_conn(conn) else False, "id": user_id},
    )


def mark_email_verified(conn: Any, user_id: int) -> None:
    _execute(
        conn,
        "UPDATE users SET email_verified = :verified, email_verified_at_ts = :ts WHERE id = :id",
        {"verified": 1 if _is_sqlite_conn(conn) else True, "ts": _now_ts(), "id": user_id},
    )


def user_emails(conn: Any, user_ids: list[int]) -> dict[int, str]:
    emails: dict[int, str] = {}
    for uid in dict.fromkeys(user_ids):
        row = _fetchone(conn, "SELECT email FROM users WHERE id = :id", {"id": uid})
        if row and row.get("email"):
            emails[int(uid)] = str(row["email"])
    return emails


def list_squares(conn: Any, quarter: int) -> list[dict[str, Any]]:
    return _fetchall(
        conn,
        """
        SELECT s.quarter, s.id, s.owner_user_id, s.updated_at_ts, u.display_name AS owner_display_name
        FROM squares s
        LEFT JOIN users u ON u.id = s.owner_user_id
        WHERE s.quarter = :q
        ORDER BY s.id
        """,
        {"q": quarter},
    )


def set_square_owner(conn: Any, quarter: int, square_id: int, owner_user_id: int | None) -> None:
    _execute(
        conn,
        "UPDATE squares SET owner_user_id = :owner, updated_at_ts = :ts WHERE quarter = :q AND id = :id",
        {"owner": owner_user_id, "ts": _now_ts(), "q": quarter, "id": square_id},
    )


def get_square_owner_user_id(conn: Any, quarter: int, square_id: int) -> int | None:
    row = _fetchone(
        conn,
        "SELECT owner_user_id FROM squares WHERE quarter = :q AND id = :id",
        {"q": quarter, "id": square_id},
    )
    if not row:
        return None
    owner = row.get("owner_user_id")
    return int(owner) if owner is not None else None


def claims_for_quarter(conn: Any, quarter: int) -> dict[tuple[int, int], game_logic.Claim]:
    rows = _fetchall(
        conn,
        """
        SELECT s.quarter, s.id, s.owner_user_id, u.display_name AS owner_display_name
        FROM squares s
        LEFT JOIN users u ON u.id = s.owner_user_id
        WHERE s.quarter = :q AND s.owner_user_id IS NOT NULL
        ORDER BY s.id
        """,
        {"q": quarter},
    )
    claims = []
    for r in rows:
        row, col = game_logic.row_col_from_id(int(r["id"]))
        claims.append(
            game_logic.Claim(
                quarter=int(r["quarter"]),
                row=row,
                col=col,
                participant_id=int(r["owner_user_id"]),
                participant_name=r.get("owner_display_name"),
            )
        )
    return game_logic.claims_by_cell(claims, quarter)


def get_score(conn: Any, quarter: int) -> dict[str, Any]:
    row = _fetchone(conn, "SELECT * FROM scores WHERE quarter = :q", {"q": quarter})
    if not row:
        raise ValueError(f"Missing score row for quarter {quarter}")
    return row


def get_score_event(conn: Any, quarter: int) -> game_logic.ScoreEvent:
    row = get_score(conn, quarter)
    return game_logic.ScoreEvent(
        quarter=int(row["quarter"]),
        home_score=int(row["home_score"]),
        away_score=int(row["away_score"]),
    )


def set_score(conn: Any, *, quarter: int, home_score: int, away_score: int, updated_by_user_id: int) -> None:
    _execute(
        conn,
        """
        UPDATE scores
        SET home_score = :home_score, away_score = :away_score, updated_at_ts = :ts, updated_by_user_id = :uid
        WHERE quarter = :q
        """,
        {"home_score": home_score, "away_score": away_score, "ts": _now_ts(), "uid": updated_by_user_id, "q": quarter},
    )


def store_verification_code(conn: Any, *, user_id: int, email: str, code: str, expires_at_ts: int) -> None:
    _execute(
        conn,
        """
        INSERT INTO verification_codes (user_id, code, email, expires_at_ts, attempts, created_at_ts)
        VALUES (:uid, :code, :email, :expires, 0, :ts)
        ON CONFLICT(user_id) DO UPDATE SET
          code = excluded.code,
          email = excluded.email,
          expires_at_ts = excluded.expires_at_ts,
          attempts = 0,
          created_at_ts = excluded.created_at_ts
        """,
        {"uid": user_id, "code": code, "email": email.strip().lower(), "expires": expires_at_ts, "ts": _now_ts()},
    )


def get_verification_code(conn: Any, user_id: int) -> dict[str, Any] | None:
    return _fetchone(conn, "SELECT * FROM verification_codes WHERE user_id = :uid", {"uid": user_id})


def delete_verification_code(conn: Any, user_id: int) -> None:
    _execute(conn, "DELETE FROM verification_codes WHERE user_id = :uid", {"uid": user_id})


def verify_email_code(conn: Any, user_id: int, code: str, *, now: float | None = None) -> None:
    record = get_verification_code(conn, user_id)
    try:
        security.check_verification_code(record, code, now=now)
    except security.VerificationError as e:
        if e.reason == security.VerificationError.MISMATCH:
            _execute(
                conn,
                "UPDATE verification_codes SET attempts = attempts + 1 WHERE user_id = :uid",
                {"uid": user_id},
            )
        elif e.reason != security.VerificationError.NOT_FOUND:
            delete_verification_code(conn, user_id)
        raise
    delete_verification_code(conn, user_id)
    mark_email_verified(conn, user_id)
    log_action(conn, user_id, "verify_email", {})


def recent_audit(conn: Any, limit: int = 50) -> list[dict[str, Any]]:
    return _fetchall(
        conn,
        """
        SELECT a.*, u.display_name AS actor_display_name
        FROM audit_log a
        LEFT JOIN users u ON u.id = a.actor_user_id
        ORDER BY a.id DESC
        LIMIT :limit
        """,
        {"limit": limit},
    )


def reset_board_keep_users(conn: Any) -> None:
    now = _now_ts()
    _execute(conn, "UPDATE squares SET owner_user_id = NULL, updated_at_ts = :ts", {"ts": now})
    _execute(
        conn,
        "UPDATE scores SET home_score = 0, away_score = 0, updated_at_ts = :ts, updated_by_user_id = NULL",
        {"ts": now},
    )
    set_setting(conn, "row_digits_json", "")
    set_setting(conn, "col_digits_json", "")
    set_setting(conn, "board_locked", "0")


def is_username_taken_error(exc: Exception) -> bool:
    if isinstance(exc, sqlite3.IntegrityError):
        return True
    if isinstance(exc, SAIntegrityError):
        orig = getattr(exc, "orig", None)
        if getattr(orig, "pgcode", None) == "23505":
            return True
        msg = (str(orig) or str(exc)).lower()
        return ("unique" in msg or "duplicate" in msg) and "username" in msg
    return False


def ensure_admin_from_env(conn: Any) -> int | None:
    username = (os.getenv("SUPERBOWL_ADMIN_USERNAME") or "").strip().lower()
    password = os.getenv("SUPERBOWL_ADMIN_PASSWORD") or ""
    display_name = (os.getenv("SUPERBOWL_ADMIN_DISPLAY_NAME") or username or "Admin").strip()
    email = (os.getenv("SUPERBOWL_ADMIN_EMAIL") or "").strip().lower() or None

    if not username or not password:
        return None

    row = get_user_by_username(conn, username)
    salt_b64, hash_b64 = security.hash_password(password)
    if not row:
        user_id = create_user(
            conn,
            username=username,
            display_name=display_name or username,
            salt_b64=salt_b64,
            password_hash_b64=hash_b64,
            is_admin=True,
            email=email,
        )
        log_action(conn, user_id, "bootstrap_admin", {"username": username})
        logger.info("Created admin user %r from environment", username)
        return user_id

    user_id = int(row["id"])
    _execute(
        conn,
        """
        UPDATE users
        SET is_admin = :is_admin,
            salt_b64 = :salt_b64,
            password_hash_b64 = :password_hash_b64,
            display_name = :display_name,
            email = COALESCE(:email, email)
        WHERE id = :id
        """,
        {
            "is_admin": 1 if _is_sqlite_conn(conn) else True,
            "salt_b64": salt_b64,
            "password_hash_b64": hash_b64,
            "display_name": display_name or str(row["display_name"]),
            "email": email,
            "id": user_id,
        },
    )
    log_action(conn, user_id, "bootstrap_admin_update", {"username": username})
    logger.info("Refreshed admin user %r from environment", username)
    return user_id
