"""Teaching turn orchestration.

One student turn, end to end:

1. Load context in parallel and build adaptive directives (plus any
   pending self-correction)
2. Route and generate through the turn graph; the first responder streams
   sentences into the progressive speech pipeline
3. Emit the text event, then schedule validation in the background
4. Emit audio in sentence order: streamed slots, or batch synthesis when a
   handoff happened or nothing was streamed
5. Emit done, then schedule persistence and evidence extraction
"""

import logging
import time
from typing import Optional

from ...core.background import BackgroundExecutor, get_background_executor
from ...core.config import get_settings
from ...core.errors import TURN_FAILED_MESSAGE, user_facing_error_message
from ...corrections.store import PendingCorrectionStore, get_correction_store
from ...mastery.directives import AdaptiveDirectives, build_adaptive_directives
from ...mastery.evidence import record_mastery_evidence
from ...speech.pipeline import ProgressiveSynthesisPipeline, prepare_batch_units, synthesize_in_batches
from ...speech.synthesizer import SpeechSynthesizer, get_speech_synthesizer
from ..base.utils import truncate_text
from .context import TeachingContextData, build_adaptive_instructions, build_agent_context, load_teaching_context
from .evidence import EvidenceExtractor
from .graph import TeachingGraph
from .router import AgentRouter
from .specialists import AgentInvoker, build_default_registry
from .state import AUTO_START_MARKER, AgentContext, AgentResponse, TurnRequest
from .tools.profile import enrich_profile_if_needed, log_adaptation
from .tools.session import save_agent_interaction, save_interaction, set_active_specialist
from .validator import ResponseValidator, requires_validation

logger = logging.getLogger(__name__)


class TeachingService:
    """
    Runs teaching turns and their detached follow-up work.

    Collaborators are injectable; unset ones are built from settings on
    first use.
    """

    def __init__(
        self,
        graph: Optional[TeachingGraph] = None,
        validator: Optional[ResponseValidator] = None,
        evidence_extractor: Optional[EvidenceExtractor] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        store: Optional[PendingCorrectionStore] = None,
        executor: Optional[BackgroundExecutor] = None,
    ):
        self._graph = graph
        self.validator = validator or ResponseValidator()
        self.evidence_extractor = evidence_extractor or EvidenceExtractor()
        self._synthesizer = synthesizer
        self.store = store or get_correction_store()
        self._executor = executor

    @property
    def graph(self) -> TeachingGraph:
        if self._graph is None:
            self._graph = TeachingGraph(AgentRouter(), AgentInvoker(build_default_registry()))
        return self._graph

    @property
    def synthesizer(self) -> SpeechSynthesizer:
        if self._synthesizer is None:
            self._synthesizer = get_speech_synthesizer()
        return self._synthesizer

    @property
    def executor(self) -> BackgroundExecutor:
        return self._executor or get_background_executor()

    # =========================================================================
    # Turn
    # =========================================================================

    def start_turn(self, request: TurnRequest, stream) -> None:
        """Run a turn detached from the HTTP connection."""
        self.executor.submit(self.run_turn(request, stream), name=f"turn:{request.session_id}")

    async def run_turn(self, request: TurnRequest, stream) -> None:
        """
        Process one turn, writing events to `stream`.

        Every failure ends the turn with a single error event, including
        cancellation of the turn task.
        """
        started = time.monotonic()
        pipeline = ProgressiveSynthesisPipeline(self.synthesizer)
        try:
            await self._run_turn(request, stream, pipeline, started)
        except Exception as e:
            logger.error(f"[turn] Turn failed for session {request.session_id}: {e}", exc_info=True)
            pipeline.discard()
            await stream.send_error(user_facing_error_message(e))
        finally:
            if not stream.finished:
                pipeline.discard()
                if await stream.send_error(TURN_FAILED_MESSAGE):
                    logger.warning(f"[turn] Turn for session {request.session_id} ended without a terminal event")

    async def _run_turn(
        self,
        request: TurnRequest,
        stream,
        pipeline: ProgressiveSynthesisPipeline,
        started: float,
    ) -> None:
        data = await load_teaching_context(
            request.user_id,
            request.session_id,
            request.lesson_id,
            self.store,
        )
        directives = build_adaptive_directives(data.profile, data.history, data.mastery)
        context = build_agent_context(
            data,
            request,
            build_adaptive_instructions(directives, data.pending_correction),
        )

        state = await self.graph.run(
            request.user_message,
            context,
            active_specialist=data.active_specialist,
            sentence_sink=pipeline,
        )
        response: AgentResponse = state["response"]
        visited = state.get("visited") or [response.agent_name]
        handed_off = len(visited) > 1

        await stream.send_text(
            display_text=response.display_text,
            audio_text=response.audio_text,
            svg=response.svg,
            agent_name=response.agent_name,
            handoff_message=response.handoff_message,
        )

        if requires_validation(response.agent_name):
            self.executor.submit(
                self.validate_response(response, context),
                name=f"validate:{request.session_id}",
            )

        # Only a specialist response built with the correction block consumes it
        if data.pending_correction and TeachingGraph.responder_invoked(state):
            self.executor.submit(
                self.store.mark_correction_delivered(data.pending_correction["id"]),
                name=f"correction-delivered:{data.pending_correction['id']}",
            )

        await self._send_audio(response, pipeline, handed_off, stream)

        routing_reason = TeachingGraph.routing_reason(state)
        await stream.send_done(response.lesson_complete, response.agent_name, routing_reason)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"[turn] Session {request.session_id} answered by {response.agent_name} "
            f"in {elapsed_ms}ms ({routing_reason})"
        )

        self.executor.submit(
            self.persist_turn(request, data, directives, response, routing_reason, elapsed_ms),
            name=f"persist:{request.session_id}",
        )

    async def _send_audio(
        self,
        response: AgentResponse,
        pipeline: ProgressiveSynthesisPipeline,
        handed_off: bool,
        stream,
    ) -> None:
        if stream.closed:
            pipeline.discard()
            logger.info("[turn] Client disconnected, skipping audio")
            return

        if not handed_off and pipeline.has_slots:
            async for chunk in pipeline.flush():
                await stream.send_audio(chunk.index, chunk.audio, chunk.text)
            return

        pipeline.discard()
        units = prepare_batch_units(response.audio_text)
        async for chunk in synthesize_in_batches(self.synthesizer, units, response.agent_name):
            await stream.send_audio(chunk.index, chunk.audio, chunk.text)

    # =========================================================================
    # Background work
    # =========================================================================

    async def validate_response(self, response: AgentResponse, context: AgentContext) -> None:
        """Validate a delivered response and park a correction on rejection."""
        result = await self.validator.validate(response, context)
        if result.approved:
            return

        await self.store.save_pending_correction(
            context.session_id,
            response.agent_name,
            response,
            result,
        )
        await self.store.log_validation_failure(
            context.session_id,
            response.agent_name,
            response,
            result,
        )

    async def persist_turn(
        self,
        request: TurnRequest,
        data: TeachingContextData,
        directives: AdaptiveDirectives,
        response: AgentResponse,
        routing_reason: str,
        elapsed_ms: int,
    ) -> None:
        """Log the turn, update session state, record evidence and enrich the profile."""
        await save_agent_interaction(
            request.session_id,
            response.agent_name,
            request.logged_message,
            response.display_text,
            routing_reason,
            elapsed_ms,
        )
        await save_interaction(
            request.session_id,
            request.logged_message,
            response.display_text,
            response.agent_name,
        )
        await set_active_specialist(
            request.session_id,
            request.user_id,
            request.lesson_id,
            response.agent_name,
        )
        await log_adaptation(
            request.user_id,
            request.lesson_id,
            request.session_id,
            directives,
            data.profile.get("learning_style"),
            response,
        )

        if request.user_message and not request.user_message.lstrip().startswith(AUTO_START_MARKER):
            await self.record_evidence(request, data, response)

        await enrich_profile_if_needed(request.user_id, request.session_id)

    async def record_evidence(
        self,
        request: TurnRequest,
        data: TeachingContextData,
        response: AgentResponse,
    ) -> None:
        """Classify the student's message and keep it when the model is confident."""
        concept = data.lesson["title"]
        evidence = await self.evidence_extractor.extract(
            request.user_message,
            response.display_text,
            concept,
        )

        threshold = get_settings().EVIDENCE_CONFIDENCE_THRESHOLD
        if evidence.confidence <= threshold:
            logger.debug(
                f"[turn] Evidence confidence {evidence.confidence:.2f} below {threshold}, not recorded"
            )
            return

        await record_mastery_evidence(
            request.user_id,
            request.lesson_id,
            request.session_id,
            evidence.evidence_type,
            truncate_text(request.user_message, 2000),
            {
                "quality_score": evidence.quality_score,
                "confidence": evidence.confidence,
                "context": concept,
            },
        )


_teaching_service: Optional[TeachingService] = None


def get_teaching_service() -> TeachingService:
    """Get or create the teaching service singleton."""
    global _teaching_service
    if _teaching_service is None:
        _teaching_service = TeachingService()
    return _teaching_service
