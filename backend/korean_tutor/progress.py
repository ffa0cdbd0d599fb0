from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import sessionmaker

from .models import UserProgress


@dataclass(frozen=True)
class ProgressRecord:
	user_id: str
	level: Optional[int]
	total_score: int
	updated_at: datetime


class ProgressRepository:
	"""Durable copy of each learner's level and score.

	In-memory sessions can be evicted or lost on restart; the score and level
	are restored from here when a fresh session is created.
	"""

	def __init__(self, session_factory: sessionmaker) -> None:
		self._session_factory = session_factory

	def load(self, user_id: str) -> Optional[ProgressRecord]:
		with self._session_factory() as db:
			row = db.get(UserProgress, user_id)
			if row is None:
				return None
			return ProgressRecord(
				user_id=row.user_id,
				level=row.level,
				total_score=row.total_score,
				updated_at=row.updated_at,
			)

	def save(self, user_id: str, *, level: Optional[int], total_score: int) -> None:
		with self._session_factory() as db:
			row = db.get(UserProgress, user_id)
			if row is None:
				row = UserProgress(user_id=user_id)
			row.level = level
			row.total_score = total_score
			row.updated_at = datetime.utcnow()
			db.add(row)
			db.commit()

	def delete(self, user_id: str) -> None:
		with self._session_factory() as db:
			row = db.get(UserProgress, user_id)
			if row is not None:
				db.delete(row)
				db.commit()
