"""Teaching API endpoints: the streaming turn plus session and mastery routes."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ..agents.teaching.context import load_lesson
from ..agents.teaching.state import MediaInput, TurnRequest
from ..agents.teaching.tools.session import create_session, end_session, get_session
from ..agents.teaching.turn import TeachingService, get_teaching_service
from ..core.errors import LessonNotFoundError, TeachRequestError
from ..mastery.evidence import EVIDENCE_TYPES, record_mastery_evidence
from ..mastery.tracker import determine_mastery, get_current_mastery_level, mastery_tier
from .events import SSE_HEADERS, EventStream, format_sse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/teach", tags=["Teach"])

IMAGE_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")
VIDEO_MIME_TYPES = ("video/mp4", "video/webm")


# ==============================================================================
# Pydantic Models
# ==============================================================================

class SessionStartRequest(BaseModel):
    """Start a lesson session."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    lesson_id: str = Field(alias="lessonId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class EvidenceRequest(BaseModel):
    """Record a piece of learning evidence."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    lesson_id: str = Field(alias="lessonId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    evidence_type: str = Field(alias="evidenceType")
    content: str
    metadata: Optional[Dict[str, Any]] = None


# ==============================================================================
# Input validation
# ==============================================================================

def _required_string(body: Dict[str, Any], key: str) -> str:
    value = body.get(key)
    if not value or not isinstance(value, str):
        raise TeachRequestError(f"{key} is required and must be a string")
    return value


def validate_turn_request(body: Any) -> TurnRequest:
    """
    Validate a raw turn body.

    Raises:
        TeachRequestError: With the message shown to the client
    """
    if not isinstance(body, dict):
        raise TeachRequestError("Request body must be a JSON object")

    user_id = _required_string(body, "userId")
    session_id = _required_string(body, "sessionId")
    lesson_id = _required_string(body, "lessonId")

    user_message = body.get("userMessage") or ""
    if not isinstance(user_message, str):
        raise TeachRequestError("userMessage must be a string")
    user_message = user_message.strip()
    audio_base64 = body.get("audioBase64")
    media_base64 = body.get("mediaBase64")

    if not user_message and not audio_base64 and not media_base64:
        raise TeachRequestError("At least one of userMessage, audioBase64, or mediaBase64 must be provided")

    attachments = []
    if audio_base64:
        audio_mime = body.get("audioMimeType")
        if not audio_mime:
            raise TeachRequestError("audioMimeType is required when audioBase64 is provided")
        attachments.append(MediaInput(data=audio_base64, mime_type=audio_mime, kind="audio"))

    if media_base64:
        media_mime = body.get("mediaMimeType")
        media_type = body.get("mediaType")
        if not media_mime or not media_type:
            raise TeachRequestError("mediaMimeType and mediaType are required when mediaBase64 is provided")
        if media_type not in ("image", "video"):
            raise TeachRequestError('mediaType must be "image" or "video"')
        if media_type == "image" and media_mime not in IMAGE_MIME_TYPES:
            raise TeachRequestError(f"Invalid image MIME type. Supported: {', '.join(IMAGE_MIME_TYPES)}")
        if media_type == "video" and media_mime not in VIDEO_MIME_TYPES:
            raise TeachRequestError(f"Invalid video MIME type. Supported: {', '.join(VIDEO_MIME_TYPES)}")
        attachments.append(MediaInput(data=media_base64, mime_type=media_mime, kind=media_type))

    return TurnRequest(
        user_id=user_id,
        session_id=session_id,
        lesson_id=lesson_id,
        user_message=user_message,
        attachments=attachments,
    )


# ==============================================================================
# Streaming turn
# ==============================================================================

@router.post("/stream")
async def teach_stream(
    request: Request,
    service: TeachingService = Depends(get_teaching_service),
):
    """
    Teach one turn as a server-sent event stream.

    Events: text, audio (one per sentence, in order), then done or error.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None

    try:
        turn = validate_turn_request(body)
    except TeachRequestError as e:
        message = e.message
        logger.warning(f"Rejected teach request: {message}")

        async def rejection():
            yield format_sse("error", {"message": message})

        return StreamingResponse(
            rejection(),
            status_code=status.HTTP_400_BAD_REQUEST,
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    stream = EventStream(turn.session_id)
    service.start_turn(turn, stream)

    async def event_generator():
        try:
            async for event in stream.events():
                yield event
        finally:
            stream.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# ==============================================================================
# Session Endpoints (REST)
# ==============================================================================

@router.post("/session/start", status_code=status.HTTP_201_CREATED)
async def start_session(request: SessionStartRequest) -> Dict[str, Any]:
    """Start a lesson session for a student."""
    try:
        lesson = await load_lesson(request.lesson_id)
    except LessonNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    result = await create_session(request.user_id, request.lesson_id, request.session_id)
    if not result["success"]:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to start session: {result['error']}",
        )

    return {
        "sessionId": result["session_id"],
        "userId": request.user_id,
        "lessonId": request.lesson_id,
        "lessonTitle": lesson["title"],
        "status": result["status"],
        "startedAt": result["started_at"],
    }


@router.post("/session/{session_id}/end")
async def end_lesson_session(session_id: str) -> Dict[str, Any]:
    """End a session and store the rules-based mastery determination."""
    session = await get_session(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    mastery = await determine_mastery(session["user_id"], session["lesson_id"], session["started_at"])
    result = await end_session(session_id, mastery_result=mastery)
    if not result["success"]:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to end session: {result['error']}",
        )

    return {
        "sessionId": session_id,
        "userId": result["user_id"],
        "lessonId": result["lesson_id"],
        "status": result["status"],
        "startedAt": result["started_at"],
        "endedAt": result["ended_at"],
        "mastery": mastery,
    }


# ==============================================================================
# Mastery Endpoints
# ==============================================================================

@router.post("/evidence", status_code=status.HTTP_201_CREATED)
async def record_evidence(request: EvidenceRequest) -> Dict[str, Any]:
    """Append learning evidence and invalidate the cached mastery score."""
    if request.evidence_type not in EVIDENCE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"evidenceType must be one of: {', '.join(EVIDENCE_TYPES)}",
        )

    result = await record_mastery_evidence(
        request.user_id,
        request.lesson_id,
        request.session_id,
        request.evidence_type,
        request.content,
        request.metadata,
    )
    if not result["success"]:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to record evidence: {result['error']}",
        )

    return {
        "success": True,
        "evidenceId": result["evidence_id"],
    }


@router.get("/mastery/{user_id}/{lesson_id}")
async def get_mastery(user_id: str, lesson_id: str) -> Dict[str, Any]:
    """Current mastery score and tier for a student and lesson."""
    mastery = await get_current_mastery_level(user_id, lesson_id)
    return {
        "userId": user_id,
        "lessonId": lesson_id,
        "mastery": mastery,
        "tier": mastery_tier(mastery),
    }
