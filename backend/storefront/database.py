"""
Database Configuration
======================

This module sets up:
1. SQLAlchemy engine (connection pool to PostgreSQL, or SQLite locally)
2. SessionLocal (database session factory)
3. Base (declarative base for models)
4. get_db (one session per request, used as a FastAPI dependency)
5. unit_of_work (begin -> writes -> commit, rollback on any exception)
6. upsert_into (INSERT ... ON CONFLICT for the active dialect)

Key Concepts:
- Engine: The "pool" of database connections
- Session: A "conversation" with the database (one request = one session)
- Base: Parent class for all database models
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from storefront import config

# ============================================================================
# SQLAlchemy ENGINE
# ============================================================================
# - pool_pre_ping=True
#   Tests connections before using them, so a restarted database does not
#   surface as "connection lost" errors.
#
# - SQLite only: check_same_thread=False lets the request thread pool share
#   the connection pool, and timeout makes concurrent writers wait for the
#   database lock instead of failing immediately.

connect_args = {}
if config.DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False, "timeout": 30}

engine = create_engine(
    config.DATABASE_URL,
    pool_pre_ping=True,
    echo=config.DATABASE_ECHO,
    connect_args=connect_args,
)

# ============================================================================
# SESSION FACTORY
# ============================================================================
# Each call to SessionLocal() returns a NEW session. Sessions are not
# thread-safe, so every HTTP request gets its own.
#
# - autoflush=False: in-memory changes are only sent when we flush/commit
# - expire_on_commit=True (default): objects reload after commit, so readers
#   always see committed state (stock, timestamps)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

Base = declarative_base()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    All-or-nothing block of writes.

    Everything executed on ``db`` inside the block is committed together when
    the block exits normally. Any exception rolls the whole transaction back
    (including reads/locks taken earlier in the same session) and is
    re-raised unchanged for the caller to translate.

    Usage:
        with unit_of_work(db):
            db.add(order)
            db.execute(update(...))
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def upsert_into(db: Session, model):
    """
    Dialect-specific ``insert()`` supporting ``on_conflict_do_nothing`` and
    ``on_conflict_do_update``.

    PostgreSQL and SQLite share the same ON CONFLICT API in SQLAlchemy, so
    callers can write a single atomic upsert for both.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported on {dialect}")
