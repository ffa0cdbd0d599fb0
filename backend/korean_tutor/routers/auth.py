import secrets

from fastapi import Depends, HTTPException
from fastapi.security import APIKeyHeader

from ..settings import settings

transport_token_header = APIKeyHeader(name="X-Transport-Token", auto_error=False)


def verify_transport(token: str | None = Depends(transport_token_header)) -> None:
	"""Reject calls that do not come from the configured chat transport adapter.

	Disabled when TRANSPORT_TOKEN is unset (local development).
	"""
	expected = settings.transport_token
	if not expected:
		return
	if not token or not secrets.compare_digest(token, expected):
		raise HTTPException(status_code=401, detail="Invalid transport token")
