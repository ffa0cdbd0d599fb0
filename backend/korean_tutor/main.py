from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from .audio import AudioIngestPipeline, GoogleSpeechTranscriber
from .cleanup import purge_stale_progress
from .db import Base, SessionLocal, engine, get_db
from .dispatcher import Dispatcher
from .gateway import GeminiExerciseGateway
from .gemini_client import GeminiClient
from .logging_utils import configure_logging
from .modes import build_controllers
from .progress import ProgressRepository
from .routers import events, progress
from .session import SessionStore
from .settings import settings

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 24 * 60 * 60


def build_dispatcher(gateway: GeminiExerciseGateway) -> Dispatcher:
	"""Wire the production collaborators from settings."""
	pipeline = AudioIngestPipeline(GoogleSpeechTranscriber())
	store = SessionStore(
		ttl_seconds=settings.session_ttl_seconds,
		max_sessions=settings.max_sessions,
		progress=ProgressRepository(SessionLocal),
	)
	return Dispatcher(store, build_controllers(gateway), pipeline)


def _purge_once() -> None:
	db = next(get_db())
	try:
		removed = purge_stale_progress(db, retention_days=settings.progress_retention_days)
		if removed:
			logger.info("progress_purged rows=%s", removed)
	except SQLAlchemyError:
		logger.exception("progress_purge_failed")
	finally:
		db.close()


async def _cleanup_watcher():
	# Run once at startup, then daily
	while True:
		_purge_once()
		await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)


def create_app(dispatcher: Optional[Dispatcher] = None) -> FastAPI:
	app = FastAPI(title="Korean Practice Tutor API")
	app.state.dispatcher = dispatcher
	app.include_router(events.router)
	app.include_router(progress.router)

	@app.get("/info")
	def info():
		return {
			"status": "ok",
			"gemini_configured": bool(settings.gemini_api_key),
			"language": settings.target_language,
			"ready": app.state.dispatcher is not None,
		}

	@app.on_event("startup")
	async def startup_event():
		configure_logging(settings.log_level, use_json=settings.log_json)
		if app.state.dispatcher is not None:
			# Injected dispatcher (tests, embedding); leave storage alone
			return
		Base.metadata.create_all(bind=engine)
		app.state.gateway = GeminiExerciseGateway(GeminiClient())
		app.state.dispatcher = build_dispatcher(app.state.gateway)
		app.state.cleanup_task = asyncio.create_task(_cleanup_watcher())
		logger.info("tutor_started model=%s language=%s", settings.gemini_model, settings.target_language)

	@app.on_event("shutdown")
	async def shutdown_event():
		task = getattr(app.state, "cleanup_task", None)
		if task is not None:
			task.cancel()
		dispatcher = app.state.dispatcher
		if dispatcher is not None:
			await dispatcher.aclose()
		gateway = getattr(app.state, "gateway", None)
		if gateway is not None:
			await gateway.aclose()

	return app


app = create_app()


def run() -> None:
	import uvicorn

	uvicorn.run("korean_tutor.main:app", host="0.0.0.0", port=8000)
