"""
Pytest configuration and fixtures for the teaching pipeline tests.
"""

import asyncio
import json
import os
import random
import sys
import tempfile
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
from httpx import AsyncClient, ASGITransport

# Tests run against a throwaway SQLite file instead of MySQL
_TEST_DB_DIR = tempfile.mkdtemp(prefix="teachstream-tests-")
os.environ["TUTOR_DB_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/test.db"
os.environ["LANGSMITH_TRACING"] = "false"

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from teachstream.agents.teaching.specialists import AgentInvoker, Specialist, SpecialistRegistry
from teachstream.agents.teaching.state import SPECIALIST_NAMES, AgentContext, AgentResponse
from teachstream.agents.teaching.turn import TeachingService, get_teaching_service
from teachstream.core.background import BackgroundExecutor
from teachstream.corrections.store import PendingCorrectionStore
from teachstream.db.base import close_all, drop_databases, get_tutor_session, init_databases
from teachstream.db.models import Lesson, StudentProfile
from teachstream.main import app
from teachstream.mastery.cache import mastery_cache


LESSON_ID = "lesson-multiplication"
USER_ID = "student-1"
SESSION_ID = "session-1"


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
async def db() -> AsyncGenerator[None, None]:
    """Fresh tables for each test."""
    mastery_cache.clear()
    await init_databases()
    yield
    await drop_databases()
    await close_all()
    mastery_cache.clear()


@pytest.fixture
async def lesson(db) -> Dict[str, Any]:
    """A grade 3 multiplication lesson."""
    async with get_tutor_session() as session:
        session.add(Lesson(
            id=LESSON_ID,
            title="Multiplication Basics",
            subject="math",
            grade_level=3,
            learning_objective="Multiply single-digit numbers",
        ))
        await session.commit()
    return {"id": LESSON_ID, "title": "Multiplication Basics", "subject": "math"}


@pytest.fixture
async def student(db) -> Dict[str, Any]:
    """A visual learner with no recorded strengths or struggles."""
    async with get_tutor_session() as session:
        session.add(StudentProfile(
            user_id=USER_ID,
            name="Sam",
            age=8,
            grade_level=3,
            learning_style="visual",
            strengths=[],
            struggles=[],
        ))
        await session.commit()
    return {"user_id": USER_ID}


# =============================================================================
# Fakes
# =============================================================================

class ScriptedSpecialist(Specialist):
    """Specialist that replays canned responses instead of calling a model."""

    def __init__(
        self,
        name: str,
        response: Optional[AgentResponse] = None,
        sentences: Optional[List[str]] = None,
        streaming: bool = True,
        stream_error: Optional[Exception] = None,
        invoke_error: Optional[Exception] = None,
    ):
        super().__init__(name, system_prompt=f"You are {name}.")
        self.response = response or AgentResponse(
            agent_name=name,
            display_text=f"Hello from {name}.",
            audio_text=f"Hello from {name}.",
        )
        self.sentences = sentences
        self.streaming = streaming
        self.stream_error = stream_error
        self.invoke_error = invoke_error
        self.invoke_calls: List[Dict[str, Any]] = []
        self.stream_calls: List[Dict[str, Any]] = []

    def supports_streaming(self) -> bool:
        return self.streaming

    async def invoke(self, message: str, context: AgentContext) -> AgentResponse:
        self.invoke_calls.append({"message": message, "context": context})
        if self.invoke_error:
            raise self.invoke_error
        return self.response

    async def stream(self, message: str, context: AgentContext, on_sentence) -> AgentResponse:
        self.stream_calls.append({"message": message, "context": context})
        sentences = self.sentences if self.sentences is not None else [self.response.audio_text]
        for index, sentence in enumerate(sentences):
            on_sentence(sentence, index)
            await asyncio.sleep(0)
        if self.stream_error:
            raise self.stream_error
        return self.response

    @property
    def last_context(self) -> AgentContext:
        calls = self.stream_calls + self.invoke_calls
        return calls[-1]["context"]


def build_registry(**overrides: Specialist) -> SpecialistRegistry:
    """Registry of scripted specialists, with per-name overrides."""
    specialists = [overrides.get(name) or ScriptedSpecialist(name) for name in SPECIALIST_NAMES]
    return SpecialistRegistry(specialists)


class FakeStructuredLLM:
    """Stands in for `llm.with_structured_output(schema)`."""

    def __init__(self, result: Any = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: List[Any] = []

    async def ainvoke(self, prompt: Any) -> Any:
        self.calls.append(prompt)
        if self.error:
            raise self.error
        return self.result


class FakeSynthesizer:
    """Returns the text itself as "audio", after a random delay."""

    def __init__(
        self,
        fail_on: Optional[List[str]] = None,
        max_delay: float = 0.02,
        seed: int = 7,
    ):
        self.fail_on = set(fail_on or [])
        self.max_delay = max_delay
        self.calls: List[Dict[str, Any]] = []
        self._random = random.Random(seed)

    async def synthesize(self, text: str, agent_name: Optional[str] = None) -> str:
        self.calls.append({"text": text, "agent_name": agent_name})
        await asyncio.sleep(self._random.uniform(0, self.max_delay))
        if text in self.fail_on:
            raise RuntimeError(f"synthesis failed for {text}")
        return f"audio:{text}"


class RecordingSink:
    """Sentence sink that remembers what the invoker did with it."""

    def __init__(self):
        self.agent_name: Optional[str] = None
        self.sentences: List[str] = []
        self.discarded = False

    def bind_agent(self, agent_name: str) -> None:
        self.agent_name = agent_name

    def submit(self, sentence: str) -> None:
        self.sentences.append(sentence)

    def discard(self) -> None:
        self.discarded = True
        self.sentences = []


def make_context(**overrides: Any) -> AgentContext:
    """Turn context for the multiplication lesson."""
    values = {
        "user_id": USER_ID,
        "session_id": SESSION_ID,
        "lesson_id": LESSON_ID,
        "user_profile": {"name": "Sam", "grade_level": 3, "strengths": [], "struggles": []},
        "lesson": {
            "id": LESSON_ID,
            "title": "Multiplication Basics",
            "subject": "math",
            "grade_level": 3,
            "learning_objective": "Multiply single-digit numbers",
        },
    }
    values.update(overrides)
    return AgentContext(**values)


def parse_sse(raw: str) -> List[Dict[str, Any]]:
    """Split an SSE body into [{"event": ..., "data": {...}}]."""
    events = []
    for block in raw.split("\n\n"):
        if not block.strip():
            continue
        event, data = None, None
        for line in block.split("\n"):
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append({"event": event, "data": data})
    return events


async def collect_events(stream) -> List[Dict[str, Any]]:
    """Drain a finished EventStream into parsed events."""
    body = ""
    async for chunk in stream.events():
        body += chunk
    return parse_sse(body)


@pytest.fixture
def executor() -> BackgroundExecutor:
    """Private executor so tests can wait for background work."""
    return BackgroundExecutor()


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def make_service(executor, synthesizer):
    """Factory for a TeachingService wired to fakes."""
    from teachstream.agents.teaching.evidence import EvidenceExtractor, EvidenceQuality
    from teachstream.agents.teaching.graph import TeachingGraph
    from teachstream.agents.teaching.router import AgentRouter
    from teachstream.agents.teaching.state import RouterOutput, ValidationResult
    from teachstream.agents.teaching.validator import ResponseValidator

    def factory(
        registry: Optional[SpecialistRegistry] = None,
        router_output: Optional[RouterOutput] = None,
        validation: Optional[ValidationResult] = None,
        evidence: Optional[EvidenceQuality] = None,
        speech: Optional[FakeSynthesizer] = None,
        router_error: Optional[Exception] = None,
    ) -> TeachingService:
        router = AgentRouter(llm=FakeStructuredLLM(
            router_output or RouterOutput(route_to="math", reason="Math question"),
            error=router_error,
        ))
        graph = TeachingGraph(router, AgentInvoker(registry or build_registry()))
        validator = ResponseValidator(llm=FakeStructuredLLM(
            validation or ValidationResult(approved=True, confidence_score=0.95),
        ))
        extractor = EvidenceExtractor(llm=FakeStructuredLLM(
            evidence or EvidenceQuality(
                evidence_type="explanation",
                quality_score=60,
                confidence=0.5,
                reasoning="Partial explanation",
            ),
        ))
        return TeachingService(
            graph=graph,
            validator=validator,
            evidence_extractor=extractor,
            synthesizer=speech or synthesizer,
            store=PendingCorrectionStore(),
            executor=executor,
        )

    return factory


# =============================================================================
# HTTP client
# =============================================================================

@pytest.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client


@pytest.fixture
def override_service(make_service):
    """Install a fake-backed TeachingService on the app."""
    installed = []

    def install(**kwargs) -> TeachingService:
        service = make_service(**kwargs)
        app.dependency_overrides[get_teaching_service] = lambda: service
        installed.append(service)
        return service

    yield install
    app.dependency_overrides.pop(get_teaching_service, None)


@pytest.fixture
def broken_store_db(monkeypatch):
    """Make every correction-store database call fail."""

    def failing_session():
        raise RuntimeError("database unavailable")

    monkeypatch.setattr("teachstream.corrections.store.get_tutor_session", failing_session)
