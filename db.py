# db.py
# Role: Database bootstrap for the statement dashboard.
#       Builds the SQLAlchemy engine and session factory from a database URL,
#       defines the declarative Base, and creates tables on demand.

"""
Database setup for the statement dashboard.

- Default database: SQLite file at <project_root>/database/finance.db
- Any SQLAlchemy URL works (PostgreSQL in production).
- Nothing is created at import time; the application context owns the engine.
"""

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Base directory of the project (where this module lives)
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Folder for the default SQLite DB
DB_DIR = os.path.join(BASE_DIR, "database")

# Default SQLAlchemy connection URL
DEFAULT_DATABASE_URL = f"sqlite:///{os.path.join(DB_DIR, 'finance.db')}"

# Declarative base class for ORM models
Base = declarative_base()


def create_db_engine(database_url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> Engine:
    """
    Create the engine for `database_url`.

    SQLite needs check_same_thread=False for FastAPI (threaded request handling).
    In-memory SQLite additionally shares one connection through StaticPool,
    otherwise every session would see its own empty database.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    connect_args = {"check_same_thread": False}

    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args=connect_args,
            poolclass=StaticPool,
        )

    # ensure the folder of a file-backed database exists
    path = database_url.split("///", 1)[-1]
    folder = os.path.dirname(os.path.abspath(path))
    os.makedirs(folder, exist_ok=True)

    return create_engine(database_url, echo=echo, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    # Standard session factory used via dependency injection (see extrato/deps.py:get_db)
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )


def init_db(engine: Engine) -> None:
    """Create database tables (only if they don't exist yet)."""
    import models  # noqa: F401  (registers the ORM classes on Base.metadata)

    Base.metadata.create_all(bind=engine)
