"""Helpers for database connection strings.

The same ``DATABASE_URL`` feeds two clients: ``asyncpg`` (the crawl queue,
which wants ``postgresql://``) and Tortoise ORM (schema and documents, which
wants ``asyncpg://`` for Postgres and accepts ``sqlite://`` as-is).
"""

from __future__ import annotations


def is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite:")


def to_postgres_dsn(url: str) -> str:
    """Normalize a SQLAlchemy- or Tortoise-style URL into a plain PostgreSQL DSN.

    ``postgresql+psycopg2://`` and ``asyncpg://`` both become
    ``postgresql://``; anything else is returned unchanged.
    """

    if url.startswith("postgresql+"):
        return "postgresql://" + url.split("://", 1)[1]
    if url.startswith("asyncpg://"):
        return "postgresql://" + url[len("asyncpg://") :]
    return url


def to_tortoise_url(url: str) -> str:
    """Convert a DSN to the scheme Tortoise expects (``asyncpg://`` for Postgres)."""

    if is_sqlite_url(url):
        return url
    url = to_postgres_dsn(url)
    if url.startswith("postgresql://"):
        return "asyncpg://" + url[len("postgresql://") :]
    if url.startswith("postgres://"):
        return "asyncpg://" + url[len("postgres://") :]
    return url
