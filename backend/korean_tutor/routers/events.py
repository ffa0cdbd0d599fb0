"""
Chat Event Router
=================

HTTP entry points for the chat transport adapter. Every endpoint forwards one
inbound chat event (button press, text message, voice note, command) to the
dispatcher and returns the resulting outcome as plain JSON. Domain failures
such as an unreachable model or a broken voice note are normal conversation
outcomes and come back with HTTP 200 and ``status="failed"``.

API Endpoints:
- POST /events/level: learner picked a level (1-6)
- POST /events/mode: learner picked a practice mode
- POST /events/next: "next exercise" under a result
- POST /events/change-level, /events/change-mode: bottom menu buttons
- POST /events/text: free text message
- POST /events/voice: voice note (direct download URL)
- POST /events/reset: /start command
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..dispatcher import Dispatcher
from .auth import verify_transport
from .deps import get_dispatcher


router = APIRouter(prefix="/events", tags=["events"], dependencies=[Depends(verify_transport)])


# ============================================================================
# REQUEST MODELS
# ============================================================================

UserId = Union[int, str]


class UserEvent(BaseModel):
	user_id: UserId


class LevelEvent(UserEvent):
	level: int = Field(description="Learner level, 1-6")


class ModeEvent(UserEvent):
	mode: Literal["reading", "listening", "speaking", "free"]


class NextEvent(UserEvent):
	mode: Literal["reading", "listening", "speaking"]


class TextEvent(UserEvent):
	text: str = Field(min_length=1)


class VoiceEvent(UserEvent):
	audio_url: str = Field(min_length=1, description="Direct download link of the voice note")


# ============================================================================
# API ENDPOINTS
# ============================================================================

@router.post("/level")
async def level_selected(req: LevelEvent, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
	outcome = await dispatcher.on_level_selected(str(req.user_id), req.level)
	if outcome.error == "invalid_level":
		raise HTTPException(status_code=400, detail=outcome.message)
	return outcome.to_dict()


@router.post("/mode")
async def mode_selected(req: ModeEvent, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
	outcome = await dispatcher.on_mode_selected(str(req.user_id), req.mode)
	return outcome.to_dict()


@router.post("/next")
async def next_exercise(req: NextEvent, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
	outcome = await dispatcher.on_next(str(req.user_id), req.mode)
	return outcome.to_dict()


@router.post("/change-level")
async def change_level(req: UserEvent, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
	outcome = await dispatcher.on_change_level(str(req.user_id))
	return outcome.to_dict()


@router.post("/change-mode")
async def change_mode(req: UserEvent, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
	outcome = await dispatcher.on_change_mode(str(req.user_id))
	return outcome.to_dict()


@router.post("/text")
async def text_message(req: TextEvent, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
	outcome = await dispatcher.on_text(str(req.user_id), req.text)
	return outcome.to_dict()


@router.post("/voice")
async def voice_message(req: VoiceEvent, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
	outcome = await dispatcher.on_voice(str(req.user_id), req.audio_url)
	return outcome.to_dict()


@router.post("/reset")
async def reset(req: UserEvent, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
	outcome = await dispatcher.on_reset(str(req.user_id))
	return outcome.to_dict()
