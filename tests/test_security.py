import json
import logging

import pytest
from jose import jwt

from intake.core.logging import JsonFormatter
from intake.core.security import verify_admin_token, verify_internal_token
from intake.db.url import normalize_database_url

from conftest import make_token


def test_admin_token_roundtrip() -> None:
    claims = verify_admin_token(make_token(subject="ops@example.com"))
    assert claims["sub"] == "ops@example.com"


def test_non_admin_token_is_refused() -> None:
    with pytest.raises(ValueError):
        verify_admin_token(make_token(role="agent"))


def test_token_signed_with_another_key_is_refused() -> None:
    forged = jwt.encode({"sub": "ops@example.com", "role": "admin"}, "another-key", algorithm="HS256")
    with pytest.raises(ValueError):
        verify_admin_token(forged)


def test_internal_token_comparison() -> None:
    assert verify_internal_token("internal-test-token") is True
    assert verify_internal_token("internal-test-tokem") is False
    assert verify_internal_token(None) is False
    assert verify_internal_token("") is False


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("postgres://u:p@db:5432/intake", "postgresql+psycopg://u:p@db:5432/intake"),
        ("postgresql+asyncpg://u:p@db/intake?ssl=true", "postgresql+psycopg://u:p@db/intake?sslmode=require"),
        ("postgresql://u:p@db/intake?ssl=false", "postgresql+psycopg://u:p@db/intake?sslmode=disable"),
        (
            "postgresql://u:p@db/intake?sslmode=verify-full&ssl=true",
            "postgresql+psycopg://u:p@db/intake?sslmode=verify-full",
        ),
        ("  ", ""),
    ],
)
def test_normalize_database_url(raw, expected) -> None:
    assert normalize_database_url(raw) == expected


def test_json_formatter_promotes_submission_id() -> None:
    record = logging.LogRecord("intake.test", logging.INFO, __file__, 1, "Submission synced", None, None)
    record.submission_id = "abc"
    record.attempts = 3

    line = json.loads(JsonFormatter(channel="audit").format(record))

    assert line["submission_id"] == "abc"
    assert line["extra"] == {"attempts": 3}
    assert line["channel"] == "audit"
    assert line["message"] == "Submission synced"
