"""Engine and session factory for the post and connection store.

``DATABASE_URL`` selects the backend. PostgreSQL gets a pooled engine tuned by
``DB_POOL_SIZE``, ``DB_MAX_OVERFLOW``, ``DB_POOL_RECYCLE`` and ``DB_SSL_MODE``;
SQLite is the local default.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from sqlalchemy import DateTime, MetaData, create_engine, func
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///crosspost.db"


class Base(DeclarativeBase):
    """Shared base for all models."""

    metadata = MetaData()

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


def engine_options(database_url: str) -> Dict[str, Any]:
    """Keyword arguments for ``create_engine`` given the backend in the URL."""
    options: Dict[str, Any] = {"echo": False, "future": True}

    if database_url.startswith("postgresql"):
        options.update({
            "pool_size": int(os.getenv("DB_POOL_SIZE", "10")),
            "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "20")),
            "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", "3600")),
            "pool_pre_ping": True,
        })
        ssl_mode = os.getenv("DB_SSL_MODE", "prefer")
        if ssl_mode:
            options["connect_args"] = {"sslmode": ssl_mode}
        return options

    options["connect_args"] = {"check_same_thread": False}
    # An in-memory database only lives as long as its single connection
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        options["poolclass"] = StaticPool
    return options


def build_engine(database_url: Optional[str] = None) -> Engine:
    url = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
    return create_engine(url, **engine_options(url))


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False)


engine = build_engine()
SessionLocal = build_session_factory(engine)
