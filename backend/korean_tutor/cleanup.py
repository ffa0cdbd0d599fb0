from __future__ import annotations
from datetime import datetime, timedelta
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import UserProgress


def purge_stale_progress(db: Session, *, retention_days: int, now: datetime | None = None) -> int:
	"""Delete progress rows that have not changed for ``retention_days``; returns rows removed."""
	if retention_days <= 0:
		return 0
	threshold = (now or datetime.utcnow()) - timedelta(days=retention_days)
	res = db.execute(delete(UserProgress).where(UserProgress.updated_at < threshold))
	db.commit()
	return res.rowcount or 0
