from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text
from .db import Base


class KeyValueEntry(Base):
	__tablename__ = "kv_store"
	# Fixed keys (e.g. "feyn_brain_sessions") each hold one serialized JSON list
	key = Column(String(128), primary_key=True, index=True)
	value = Column(Text, nullable=False, default="[]")
	created_at = Column(DateTime, default=datetime.utcnow, nullable=True)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
