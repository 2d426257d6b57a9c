from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./feynbrain.db"

Base = declarative_base()


def make_engine(url: str) -> Engine:
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	# In-memory SQLite must share one connection or every session sees an empty database
	if url in ("sqlite://", "sqlite:///:memory:"):
		return create_engine(url, connect_args=connect_args, poolclass=StaticPool, future=True)
	return create_engine(url, connect_args=connect_args, future=True)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(bind: Engine | None = None) -> None:
	bind = bind or engine
	try:
		inspector = inspect(bind)
		tables = set(inspector.get_table_names())
	except Exception:
		return
	if "kv_store" in tables:
		cols = {c["name"] for c in inspector.get_columns("kv_store")}
		with bind.begin() as conn:
			if "created_at" not in cols:
				conn.exec_driver_sql("ALTER TABLE kv_store ADD COLUMN created_at DATETIME")
