"""Pytest configuration and fixtures for tests."""
import json
import os
import sys
from pathlib import Path
from types import SimpleNamespace

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment variables BEFORE any imports
os.environ["GEMINI_API_KEY"] = "test-key-for-ci"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["LOG_FILE"] = ""
os.environ["PROPOSAL_SECRET"] = "test-proposal-secret"
os.environ.pop("ANALYTICS_ENDPOINT", None)
os.environ.pop("ANALYTICS_SECRET", None)

import httpx
import pytest

from cart_assistant.agent.context import RequestContext
from cart_assistant.agent.llm_client import GeminiClient
from cart_assistant.agent.orchestrator import AgentOrchestrator
from cart_assistant.analytics.audit import AuditTrail
from cart_assistant.analytics.telemetry import UsageTelemetry
from cart_assistant.database.db import create_session_factory, init_db
from cart_assistant.database.models import AuditLog, Product, ProductVariation
from cart_assistant.mcp.mcp_client import ToolRegistry
from cart_assistant.mcp.tools.cart_tools import register_cart_tools
from cart_assistant.mcp.tools.product_tools import register_product_tools
from cart_assistant.mcp.tools.proposal_tools import register_proposal_tools
from cart_assistant.memory.conversation_store import ConversationStore
from cart_assistant.memory.proposal_store import ProposalManager
from cart_assistant.memory.session_manager import SessionManager
from cart_assistant.services.commerce_backend import SqlCommerceBackend
from cart_assistant.utils.cache import ToolCache
from cart_assistant.utils.guardrails import InputSanitizer
from cart_assistant.utils.rate_limiter import RateLimiter
from cart_assistant.utils.store import MemoryStore

GUEST_IP = "203.0.113.7"


class FakeClock:
    """Manually advanced clock for TTL and time-budget tests."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordedSleep:
    """Async sleep replacement that only records the requested delays."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


class ScriptedLLM:
    """Serves queued generateContent answers through an httpx MockTransport.

    Entries are response bodies (dicts), ``httpx.Response`` objects or
    exceptions to raise. The last entry is repeated once the queue runs dry.
    Every request payload is kept in ``requests``.
    """

    def __init__(self):
        self.responses = []
        self.requests = []
        self.headers = []
        self.on_request = None

    def queue(self, *entries):
        self.responses.extend(entries)

    @staticmethod
    def usage(prompt_tokens=10, output_tokens=5):
        return {
            "promptTokenCount": prompt_tokens,
            "candidatesTokenCount": output_tokens,
            "totalTokenCount": prompt_tokens + output_tokens,
        }

    @classmethod
    def text(cls, text, finish_reason="STOP"):
        return {
            "candidates": [{
                "content": {"role": "model", "parts": [{"text": text}]},
                "finishReason": finish_reason,
            }],
            "usageMetadata": cls.usage(),
        }

    @classmethod
    def call(cls, name, args=None):
        call = {"name": name}
        if args is not None:
            call["args"] = args
        return {
            "candidates": [{
                "content": {"role": "model", "parts": [{"functionCall": call}]},
                "finishReason": "STOP",
            }],
            "usageMetadata": cls.usage(),
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        if self.on_request:
            self.on_request()
        entry = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, httpx.Response):
            return httpx.Response(entry.status_code, headers=entry.headers, content=entry.content)
        return httpx.Response(200, json=entry)

    def client(self, sleep=None) -> GeminiClient:
        return GeminiClient(
            api_key="test-key",
            model="gemini-test",
            base_url="https://llm.test/v1beta",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
            sleep=sleep or RecordedSleep(),
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def db_engine():
    engine, factory = create_session_factory("sqlite://")
    init_db(bind=engine)
    yield SimpleNamespace(engine=engine, session_factory=factory)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return db_engine.session_factory


@pytest.fixture
def catalog(session_factory):
    """Seed a small catalog; returns product and variation ids by name."""
    db = session_factory()
    try:
        cacti = Product(name="Cacti", price=12.0, product_type="variable")
        cacti.variations = [
            ProductVariation(attributes={"model": model}, price=12.0)
            for model in ("Standard", "Neutral", "Detailed", "Retro")
        ]
        cats = Product(name="Cats", price=10.0, product_type="variable")
        cats.variations = [
            ProductVariation(attributes={"model": "Standard"}, price=10.0),
            ProductVariation(attributes={"model": "Retro"}, price=11.0, in_stock=False),
        ]
        products = [
            cacti,
            cats,
            Product(name="Cactos", price=8.5, product_type="simple"),
            Product(name="Knot Tying", price=5.0, product_type="simple"),
            Product(name="Dogs", price=7.25, product_type="simple"),
            Product(name="Astronomy", price=9.0, product_type="simple", in_stock=False),
            Product(name="Hidden Item", price=1.0, product_type="simple", published=False),
        ]
        db.add_all(products)
        db.commit()
        ids = {product.name: product.id for product in products}
        variations = {
            (product.name, variation.attributes["model"]): variation.id
            for product in (cacti, cats)
            for variation in product.variations
        }
        return SimpleNamespace(ids=ids, variations=variations)
    finally:
        db.close()


@pytest.fixture
def backend(session_factory):
    return SqlCommerceBackend(session_factory)


@pytest.fixture
def proposals(store, clock):
    return ProposalManager(store, "test-proposal-secret", ttl=600, clock=clock)


@pytest.fixture
def registry(backend, proposals, store):
    registry = ToolRegistry(cache=ToolCache(store))
    register_product_tools(registry, backend)
    register_cart_tools(registry, backend, proposals)
    register_proposal_tools(registry, backend, proposals)
    return registry


@pytest.fixture
def guest_context():
    return RequestContext(session_id="f" * 64, client_ip=GUEST_IP, user_agent="pytest")


@pytest.fixture
def script():
    return ScriptedLLM()


@pytest.fixture
def recorded_sleep():
    return RecordedSleep()


class AssistantHarness:
    """Orchestrator wired to in-memory collaborators and a scripted LLM."""

    def __init__(self, orchestrator, sessions, history, telemetry, script, clock, session_factory):
        self.orchestrator = orchestrator
        self.sessions = sessions
        self.history = history
        self.telemetry = telemetry
        self.script = script
        self.clock = clock
        self.session_factory = session_factory

    async def new_context(self, user_id=None, client_ip=GUEST_IP, user_agent="pytest"):
        session_id = await self.sessions.create_session(user_id, client_ip)
        return RequestContext(
            session_id=session_id, client_ip=client_ip, user_id=user_id, user_agent=user_agent
        )

    def audit_rows(self, action=None):
        db = self.session_factory()
        try:
            query = db.query(AuditLog)
            if action:
                query = query.filter(AuditLog.action == action)
            return [(row.action, row.details) for row in query.order_by(AuditLog.id).all()]
        finally:
            db.close()


@pytest.fixture
def assistant(session_factory, store, registry, script, recorded_sleep, catalog):
    clock = FakeClock()
    history = ConversationStore(session_factory)
    sessions = SessionManager(store, timeout=1800)
    telemetry = UsageTelemetry()
    orchestrator = AgentOrchestrator(
        llm=script.client(sleep=recorded_sleep),
        registry=registry,
        history=history,
        sessions=sessions,
        rate_limiter=RateLimiter(store, limit=10, window=60),
        sanitizer=InputSanitizer(),
        audit=AuditTrail(session_factory, debug=True),
        telemetry=telemetry,
        system_instruction="You are a test assistant.",
        generation_config={"temperature": 0.0},
        max_steps=5,
        time_budget=25.0,
        analytics_salt="test-salt",
        clock=clock,
    )
    return AssistantHarness(orchestrator, sessions, history, telemetry, script, clock, session_factory)
