import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

DEFAULT_DATABASE_URL = "sqlite:///./bike_configurator.db"


def _build_database_url() -> str:
	return os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL


def _snapshot_isolation_level(url: str) -> Optional[str]:
	level = os.getenv("SNAPSHOT_ISOLATION_LEVEL")
	if level:
		return level
	# pysqlite has no REPEATABLE READ
	if url.startswith("sqlite"):
		return None
	return "REPEATABLE READ"


DATABASE_URL = _build_database_url()
SNAPSHOT_ISOLATION_LEVEL = _snapshot_isolation_level(DATABASE_URL)

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, future=True, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)

Base = declarative_base()


def init_db() -> None:
	# Import models so every table is registered on Base.metadata
	from . import models  # noqa: F401

	Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


@contextmanager
def db_session_scope() -> Generator[Session, None, None]:
	"""Provide a transactional scope around a series of operations."""
	session = SessionLocal()
	try:
		yield session
		session.commit()
	except Exception:
		session.rollback()
		raise
	finally:
		session.close()


@contextmanager
def snapshot_scope(session: Session) -> Generator[Session, None, None]:
	"""Run a group of reads inside one transaction, then roll it back.

	A session already inside a transaction is reused as is, so the reads join
	whatever the caller started.
	"""
	if session.in_transaction():
		yield session
		return
	if SNAPSHOT_ISOLATION_LEVEL:
		session.connection(execution_options={"isolation_level": SNAPSHOT_ISOLATION_LEVEL})
	try:
		yield session
	finally:
		session.rollback()
