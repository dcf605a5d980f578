"""Engine, session factory and declarative base."""
from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

# Override via environment; the local sqlite file is enough for a single node.
SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./lots.db")

_connect_args = {"check_same_thread": False} if SQLALCHEMY_DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
	pass


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Iterator[Session]:
	"""Yield a fresh session; rollback on error, always close.

	The factory is looked up at call time so tests can rebind ``SessionLocal``.
	"""
	session = (factory or SessionLocal)()
	try:
		yield session
	except Exception:
		session.rollback()
		raise
	finally:
		session.close()
