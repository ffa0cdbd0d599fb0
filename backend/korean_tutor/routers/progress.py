from fastapi import APIRouter, Depends

from ..dispatcher import Dispatcher
from .auth import verify_transport
from .deps import get_dispatcher

router = APIRouter(prefix="/progress", tags=["progress"], dependencies=[Depends(verify_transport)])


@router.get("/{user_id}")
async def get_progress(user_id: str, dispatcher: Dispatcher = Depends(get_dispatcher)):
	return dispatcher.progress(user_id).to_dict()


@router.get("/{user_id}/session")
async def get_session_state(user_id: str, dispatcher: Dispatcher = Depends(get_dispatcher)):
	return dispatcher.store.get(user_id).snapshot()
