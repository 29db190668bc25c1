from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./vocaquiz.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


def get_session_factory():
	# Background jobs outlive the request session and open their own
	return SessionLocal


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema() -> None:
	try:
		inspector = inspect(engine)
		tables = set(inspector.get_table_names())
	except Exception:
		return
	if "quiz_shares" in tables:
		cols = {c["name"] for c in inspector.get_columns("quiz_shares")}
		with engine.begin() as conn:
			if "view_count" not in cols:
				conn.exec_driver_sql("ALTER TABLE quiz_shares ADD COLUMN view_count INTEGER DEFAULT 0 NOT NULL")
			if "expires_at" not in cols:
				conn.exec_driver_sql("ALTER TABLE quiz_shares ADD COLUMN expires_at DATETIME")
