"""Database URL normalization for Alembic.

Kept apart from env.py so it can be tested without alembic.context.
"""

from __future__ import annotations

import os
import shlex
from urllib.parse import quote_plus

_DRIVER_SCHEME = "postgresql+psycopg2://"


def _libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq "key=value ..." DSN to a SQLAlchemy URL.

    A host starting with "/" is a unix socket directory and is passed as the
    ?host= query parameter.
    """
    tokens = dict(part.split("=", 1) for part in shlex.split(dsn) if "=" in part)
    user = quote_plus(tokens.get("user", ""))
    password = quote_plus(tokens.get("password", ""))
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")
    port = tokens.get("port", "5432")

    credentials = f"{user}:{password}@" if password else (f"{user}@" if user else "")
    if host.startswith("/"):
        return f"{_DRIVER_SCHEME}{credentials}/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_SCHEME}{credentials}{host}:{port}/{dbname}"


def _get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return _libpq_dsn_to_url(url)
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return _DRIVER_SCHEME + url[len(scheme):]
    return url
