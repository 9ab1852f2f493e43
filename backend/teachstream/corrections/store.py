"""Pending corrections and the validation-failure audit log.

When the validator rejects a response that was already delivered, the
correction is parked here and picked up by the same session's next turn.

All operations log and swallow their own errors: a broken correction store
must never break a lesson. Reads return None, writes return success dicts.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update

from ..agents.teaching.state import AgentResponse, ValidationResult
from ..db.base import get_tutor_session
from ..db.models import PendingCorrection, ValidationFailure

logger = logging.getLogger(__name__)


def _correction_to_dict(row: PendingCorrection) -> Dict[str, Any]:
    return {
        "id": row.id,
        "session_id": row.session_id,
        "specialist_name": row.specialist_name,
        "original_response": row.original_response or {},
        "validation_issues": row.validation_issues or [],
        "required_fixes": row.required_fixes or [],
        "status": row.status,
        "created_at": row.created_at,
        "delivered_at": row.delivered_at,
    }


class PendingCorrectionStore:
    """Database-backed store for corrections awaiting delivery."""

    async def save_pending_correction(
        self,
        session_id: str,
        specialist_name: str,
        response: AgentResponse,
        validation: ValidationResult,
    ) -> Dict[str, Any]:
        """
        Park a rejected response for correction on the next turn.

        Args:
            session_id: Session the response was delivered in
            specialist_name: Agent that produced it
            response: The delivered response
            validation: Validator verdict

        Returns:
            Success dict with the correction id
        """
        try:
            async with get_tutor_session() as session:
                row = PendingCorrection(
                    session_id=session_id,
                    specialist_name=specialist_name,
                    original_response=response.snapshot(),
                    validation_issues=list(validation.issues),
                    required_fixes=list(validation.required_fixes or []),
                    status="pending",
                )
                session.add(row)
                await session.commit()
                correction_id = row.id

            logger.info(f"[corrections] Stored correction for {specialist_name} in session {session_id}")
            return {
                "success": True,
                "correction_id": correction_id,
            }

        except Exception as e:
            logger.error(f"[corrections] Failed to save pending correction: {e}")
            return {
                "success": False,
                "error": str(e),
            }

    async def get_pending_correction(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Oldest undelivered correction for a session, or None."""
        try:
            async with get_tutor_session() as session:
                result = await session.execute(
                    select(PendingCorrection)
                    .where(
                        PendingCorrection.session_id == session_id,
                        PendingCorrection.status == "pending",
                    )
                    .order_by(PendingCorrection.created_at, PendingCorrection.id)
                    .limit(1)
                )
                row = result.scalar_one_or_none()
                return _correction_to_dict(row) if row else None

        except Exception as e:
            logger.error(f"[corrections] Failed to fetch pending correction: {e}")
            return None

    async def mark_correction_delivered(self, correction_id: int) -> Dict[str, Any]:
        """
        Mark a correction delivered. Only a pending row is updated, so a
        correction is delivered at most once.
        """
        try:
            async with get_tutor_session() as session:
                result = await session.execute(
                    update(PendingCorrection)
                    .where(
                        PendingCorrection.id == correction_id,
                        PendingCorrection.status == "pending",
                    )
                    .values(status="delivered", delivered_at=datetime.utcnow().isoformat())
                )
                await session.commit()
                updated = result.rowcount or 0

            if updated:
                logger.info(f"[corrections] Marked correction {correction_id} as delivered")
            else:
                logger.warning(f"[corrections] Correction {correction_id} was not pending")
            return {
                "success": True,
                "updated": updated,
            }

        except Exception as e:
            logger.error(f"[corrections] Failed to mark correction as delivered: {e}")
            return {
                "success": False,
                "error": str(e),
            }

    async def log_validation_failure(
        self,
        session_id: str,
        specialist_name: str,
        response: AgentResponse,
        validation: ValidationResult,
        retry_count: int = 0,
    ) -> Dict[str, Any]:
        """Append an audit row for a rejected response."""
        try:
            async with get_tutor_session() as session:
                session.add(ValidationFailure(
                    session_id=session_id,
                    specialist_name=specialist_name,
                    original_response=response.snapshot(),
                    validation_result=validation.model_dump(),
                    retry_count=retry_count,
                    final_action="failed_validation",
                ))
                await session.commit()

            logger.info(f"[corrections] Logged validation failure for {specialist_name}")
            return {"success": True}

        except Exception as e:
            logger.error(f"[corrections] Failed to log validation failure: {e}")
            return {
                "success": False,
                "error": str(e),
            }


_correction_store: Optional[PendingCorrectionStore] = None


def get_correction_store() -> PendingCorrectionStore:
    """Get or create the correction store singleton."""
    global _correction_store
    if _correction_store is None:
        _correction_store = PendingCorrectionStore()
    return _correction_store
