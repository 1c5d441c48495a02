"""Admin API endpoints for inspecting and steering the bot."""

from fastapi import APIRouter, Depends

from app.schemas.admin import PauseStatusResponse, SessionSnapshotResponse
from app.services.message_service import ConversationOrchestrator, get_orchestrator

router = APIRouter(prefix="/admin", tags=["admin"])


def _pause_status(state, now: float) -> PauseStatusResponse:
    active = state.is_active(now)
    return PauseStatusResponse(
        is_paused=active,
        pause_level=state.pause_level if active else 0,
        paused_until=state.paused_until if active else None,
        remaining_minutes=round(state.remaining_minutes(now), 1) if active else 0.0,
    )


@router.get("/pause", response_model=PauseStatusResponse)
async def get_pause(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    """Current intervention pause."""
    controller = orchestrator.intervention
    return _pause_status(await controller.get_state(), controller.clock())


@router.delete("/pause", response_model=PauseStatusResponse)
async def clear_pause(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    """Lift the intervention pause immediately."""
    controller = orchestrator.intervention
    await controller.clear()
    return _pause_status(await controller.get_state(), controller.clock())


@router.get("/sessions/{user_id}", response_model=SessionSnapshotResponse)
async def get_session(user_id: str, orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    """Conversation record, pending response and invariant violations for one user."""
    return SessionSnapshotResponse(**await orchestrator.session_snapshot(user_id))
