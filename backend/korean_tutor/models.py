from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer
from .db import Base


class UserProgress(Base):
	__tablename__ = "user_progress"
	# Chat transport identity (stringified)
	user_id = Column(String(128), primary_key=True, index=True)
	level = Column(Integer, nullable=True)
	total_score = Column(Integer, default=0, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
