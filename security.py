from __future__ import annotations

import base64
import hashlib
import hmac
import os
import secrets
import time
from typing import Any, Mapping

VERIFICATION_CODE_TTL_SECONDS = 10 * 60
MAX_VERIFICATION_ATTEMPTS = 5


def _b64e(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64d(txt: str) -> bytes:
    return base64.b64decode(txt.encode("ascii"))


def hash_password(password: str, *, salt: bytes | None = None) -> tuple[str, str]:
    if salt is None:
        salt = os.urandom(16)
    pwd = password.encode("utf-8")
    derived = hashlib.pbkdf2_hmac("sha256", pwd, salt, 200_000)
    return _b64e(salt), _b64e(derived)


def verify_password(password: str, *, salt_b64: str, password_hash_b64: str) -> bool:
    salt = _b64d(salt_b64)
    pwd = password.encode("utf-8")
    derived = hashlib.pbkdf2_hmac("sha256", pwd, salt, 200_000)
    expected = _b64d(password_hash_b64)
    return hmac.compare_digest(derived, expected)


class VerificationError(ValueError):
    NOT_FOUND = "not_found"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    EXPIRED = "expired"
    MISMATCH = "mismatch"

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


def generate_verification_code() -> str:
    return str(100_000 + secrets.randbelow(900_000))


def verification_expiry(now: float | None = None) -> int:
    return int(now if now is not None else time.time()) + VERIFICATION_CODE_TTL_SECONDS


def check_verification_code(record: Mapping[str, Any] | None, code: str, *, now: float | None = None) -> None:
    """Raise VerificationError unless `code` matches a live, not-yet-exhausted record.

    Checks run in order: missing record, attempt limit, expiry, then the code itself.
    """
    if not record:
        raise VerificationError(
            VerificationError.NOT_FOUND, "No verification code found. Please request a new code."
        )
    if int(record["attempts"]) >= MAX_VERIFICATION_ATTEMPTS:
        raise VerificationError(
            VerificationError.TOO_MANY_ATTEMPTS, "Too many attempts. Please request a new code."
        )
    now_ts = now if now is not None else time.time()
    if now_ts > int(record["expires_at_ts"]):
        raise VerificationError(VerificationError.EXPIRED, "Code has expired. Please request a new code.")
    expected = str(record["code"]).encode("utf-8")
    if not hmac.compare_digest(expected, (code or "").strip().encode("utf-8")):
        raise VerificationError(VerificationError.MISMATCH, "Invalid code. Please try again.")
