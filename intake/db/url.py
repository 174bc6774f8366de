from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

ASYNC_DRIVER = "postgresql+psycopg"

# Hosted Postgres providers hand out these spellings.
_POSTGRES_SCHEMES = {"postgres", "postgresql", "postgresql+asyncpg", "postgresql+psycopg2"}
_SSL_OFF = {"0", "false", "no", "off", "disable"}


def _sslmode(value: str) -> str:
    value = value.strip().lower()
    if value in _SSL_OFF:
        return "disable"
    if value in {"verify-ca", "verify-full", "require", "prefer", "allow"}:
        return value
    return "require"


def normalize_database_url(url: str) -> str:
    """Point a Postgres URL at the psycopg async driver and translate ``ssl=`` to ``sslmode=``."""
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = ASYNC_DRIVER if parts.scheme in _POSTGRES_SCHEMES else parts.scheme

    query: dict[str, str] = {}
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key.lower() == "ssl":
            query.setdefault("sslmode", _sslmode(value))
        else:
            query[key] = value
    return urlunsplit((scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
