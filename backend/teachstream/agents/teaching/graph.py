"""Turn graph: route the message, get a response, follow handoffs.

    route ──(direct answer)──────────────────────────────► END
      │
      ▼
    respond ──(handoffRequest and hops < MAX_HANDOFFS)──► handoff ─┐
      │                                                    ▲       │
      ▼                                                    └───────┘
     END

Only the first responder streams sentences to the speech pipeline. Agents
reached through a handoff are called without streaming, and the caller
switches to batch synthesis of the final audio text.
"""

import logging
from typing import Any, Dict, Optional

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from ...core.config import get_settings
from ...observability.langsmith import build_trace_config
from .router import AgentRouter
from .specialists import AgentInvoker, SentenceSink
from .state import (
    AUTO_START_MARKER,
    COORDINATOR,
    AgentContext,
    AgentResponse,
    RoutingDecision,
    TeachingState,
    resolve_agent_name,
)

logger = logging.getLogger(__name__)


def _with_previous_agent(context: AgentContext, previous_agent: str) -> AgentContext:
    return AgentContext(
        user_id=context.user_id,
        session_id=context.session_id,
        lesson_id=context.lesson_id,
        user_profile=context.user_profile,
        lesson=context.lesson,
        conversation_history=context.conversation_history,
        adaptive_instructions=context.adaptive_instructions,
        previous_agent=previous_agent,
        attachments=context.attachments,
    )


class TeachingGraph:
    """
    Wrapper around the compiled route/respond/handoff graph.

    One instance serves every session; per-turn inputs travel in the state
    and the sentence sink travels in the runnable config.
    """

    def __init__(
        self,
        router: AgentRouter,
        invoker: AgentInvoker,
        max_handoffs: Optional[int] = None,
    ):
        self.router = router
        self.invoker = invoker
        self.max_handoffs = max_handoffs if max_handoffs is not None else get_settings().MAX_HANDOFFS
        self.graph = self._build_graph()

    def _build_graph(self):
        graph = StateGraph(TeachingState)

        graph.add_node("route", self._route_node)
        graph.add_node("respond", self._respond_node)
        graph.add_node("handoff", self._handoff_node)

        graph.set_entry_point("route")

        graph.add_conditional_edges(
            "route",
            self._after_route,
            {
                "respond": "respond",
                "end": END,
            },
        )
        graph.add_conditional_edges(
            "respond",
            self._after_response,
            {
                "handoff": "handoff",
                "end": END,
            },
        )
        graph.add_conditional_edges(
            "handoff",
            self._after_response,
            {
                "handoff": "handoff",
                "end": END,
            },
        )

        return graph.compile()

    # =========================================================================
    # Nodes
    # =========================================================================

    async def _route_node(self, state: TeachingState) -> Dict[str, Any]:
        message = state["message"]
        context = state["context"]

        if message.lstrip().startswith(AUTO_START_MARKER):
            decision = RoutingDecision(
                target_agent=COORDINATOR,
                reason="AUTO_START lesson introduction by Coordinator",
            )
        else:
            decision = await self.router.route(
                message,
                context,
                state.get("active_specialist"),
                context.lesson,
            )

        logger.info(f"[graph] Routed to {decision.target_agent}: {decision.reason}")
        update: Dict[str, Any] = {
            "decision": decision,
            "routing_reason": decision.reason,
            "visited": [],
            "hops": 0,
            "streamed": False,
            "chain_aborted": False,
        }

        if decision.is_direct:
            update["response"] = AgentResponse(
                agent_name=COORDINATOR,
                display_text=decision.direct_response,
                audio_text=decision.direct_response,
            )
        return update

    async def _respond_node(self, state: TeachingState, config: RunnableConfig) -> Dict[str, Any]:
        decision = state["decision"]
        sink: Optional[SentenceSink] = (config.get("configurable") or {}).get("sentence_sink")
        previous = state.get("active_specialist") or COORDINATOR

        response = await self.invoker.invoke(
            decision.target_agent,
            state["message"],
            _with_previous_agent(state["context"], previous),
            sentence_sink=sink,
        )

        if decision.handoff_message:
            response = response.model_copy(update={"handoff_message": decision.handoff_message})

        return {
            "response": response,
            "visited": [response.agent_name],
            "hops": 0,
            "streamed": sink is not None,
        }

    async def _handoff_node(self, state: TeachingState) -> Dict[str, Any]:
        current = state["response"]
        hops = state.get("hops", 0)
        visited = list(state.get("visited", []))

        try:
            target = resolve_agent_name(current.handoff_request)
            logger.info(f"[graph] Handoff {hops + 1}: {current.agent_name} -> {target}")
            response = await self.invoker.invoke(
                target,
                state["message"],
                _with_previous_agent(state["context"], current.agent_name),
            )
        except Exception as e:
            logger.error(
                f"[graph] Handoff from {current.agent_name} to {current.handoff_request} failed, "
                f"keeping last response: {e}"
            )
            return {
                "response": current.model_copy(update={"handoff_request": None}),
                "chain_aborted": True,
            }

        if current.handoff_message:
            response = response.model_copy(update={"handoff_message": current.handoff_message})

        visited.append(response.agent_name)
        return {
            "response": response,
            "visited": visited,
            "hops": hops + 1,
        }

    # =========================================================================
    # Edges
    # =========================================================================

    @staticmethod
    def _after_route(state: TeachingState) -> str:
        return "end" if state["decision"].is_direct else "respond"

    def _after_response(self, state: TeachingState) -> str:
        response = state["response"]
        if not response.handoff_request:
            return "end"
        if state.get("hops", 0) >= self.max_handoffs:
            logger.warning(
                f"[graph] Handoff limit {self.max_handoffs} reached, "
                f"ignoring request from {response.agent_name} to {response.handoff_request}"
            )
            return "end"
        return "handoff"

    # =========================================================================
    # Execution
    # =========================================================================

    async def run(
        self,
        message: str,
        context: AgentContext,
        active_specialist: Optional[str] = None,
        sentence_sink: Optional[SentenceSink] = None,
    ) -> TeachingState:
        """
        Resolve one student turn to a final response.

        Args:
            message: Student message (may be the auto-start marker or empty)
            context: Turn context
            active_specialist: Specialist stored on the session, if any
            sentence_sink: Receives streamed sentences from the first responder

        Returns:
            Final graph state; `response` holds the answer, `visited` the
            agents that answered in order

        Raises:
            UnknownAgentError: If the first responder is not a known agent
            GenerationFailedError: If the first responder fails entirely
        """
        config = build_trace_config(
            thread_id=context.session_id,
            tags=["teaching", "turn"],
            metadata={
                "user_id": context.user_id,
                "lesson_id": context.lesson_id,
            },
            config={"configurable": {"sentence_sink": sentence_sink}},
        )
        initial: TeachingState = {
            "message": message,
            "context": context,
            "active_specialist": active_specialist,
        }
        return await self.graph.ainvoke(initial, config=config)

    @staticmethod
    def responder_invoked(state: TeachingState) -> bool:
        """True when an agent generated the answer, rather than the router directly."""
        return bool(state.get("visited"))

    @staticmethod
    def routing_reason(state: TeachingState) -> str:
        """Routing explanation reported to the client."""
        visited = state.get("visited") or []
        if len(visited) > 1:
            return "Handoff chain: " + " → ".join(visited)
        return state.get("routing_reason", "")
