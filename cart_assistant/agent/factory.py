"""Wires every collaborator from a Settings object."""

from typing import Optional

from cart_assistant.agent.llm_client import GeminiClient
from cart_assistant.agent.orchestrator import AgentOrchestrator, load_system_prompt
from cart_assistant.analytics.audit import AuditTrail
from cart_assistant.analytics.logger import configure_logging, logger
from cart_assistant.analytics.telemetry import UsageTelemetry
from cart_assistant.database.db import create_session_factory, init_db
from cart_assistant.mcp.mcp_client import ToolRegistry
from cart_assistant.mcp.tools.cart_tools import register_cart_tools
from cart_assistant.mcp.tools.product_tools import register_product_tools
from cart_assistant.mcp.tools.proposal_tools import register_proposal_tools
from cart_assistant.memory.conversation_store import ConversationStore
from cart_assistant.memory.proposal_store import ProposalManager
from cart_assistant.memory.session_manager import SessionManager
from cart_assistant.services.commerce_backend import CommerceBackend, SqlCommerceBackend
from cart_assistant.utils.cache import ToolCache
from cart_assistant.utils.config import Settings
from cart_assistant.utils.guardrails import InputSanitizer
from cart_assistant.utils.rate_limiter import RateLimiter
from cart_assistant.utils.retry import RetryConfig
from cart_assistant.utils.store import KeyValueStore, MemoryStore, RedisStore
from cart_assistant.utils.validation import validate_config


class AssistantContainer:
    """Process-wide object graph.

    ``start()`` configures logging, connects the store (Redis when enabled,
    otherwise in-process), creates tables and builds the orchestrator;
    ``close()`` releases network clients. Anything passed to the constructor
    is used as-is instead of being built from settings.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[KeyValueStore] = None,
        session_factory=None,
        engine=None,
        llm: Optional[GeminiClient] = None,
        backend: Optional[CommerceBackend] = None,
        telemetry: Optional[UsageTelemetry] = None,
    ):
        self.settings = settings
        self.store = store
        self.session_factory = session_factory
        self.engine = engine
        self.llm = llm
        self.backend = backend
        self.telemetry = telemetry
        self.orchestrator: Optional[AgentOrchestrator] = None
        self.sessions: Optional[SessionManager] = None
        self.history: Optional[ConversationStore] = None
        self.cache: Optional[ToolCache] = None
        self.registry: Optional[ToolRegistry] = None

    async def _connect_store(self) -> KeyValueStore:
        if not self.settings.cache_enabled:
            logger.info("Using in-process store")
            return MemoryStore()
        store = RedisStore(self.settings.redis_url)
        try:
            await store.connect()
            return store
        except Exception as e:
            logger.warning(f"Redis not available, falling back to in-process store: {e}")
            return MemoryStore()

    async def start(self) -> "AssistantContainer":
        settings = self.settings
        configure_logging(settings)
        validate_config(settings)

        if self.store is None:
            self.store = await self._connect_store()

        if self.session_factory is None:
            self.engine, self.session_factory = create_session_factory(settings.database_url)
        init_db(bind=self.engine or self.session_factory.kw["bind"])

        self.history = ConversationStore(self.session_factory)
        self.backend = self.backend or SqlCommerceBackend(self.session_factory)
        self.sessions = SessionManager(
            self.store,
            timeout=settings.session_timeout,
            max_lifetime=settings.session_absolute_lifetime,
        )
        proposals = ProposalManager(self.store, settings.proposal_secret, ttl=settings.proposal_ttl)

        self.cache = ToolCache(self.store)
        self.registry = ToolRegistry(cache=self.cache)
        register_product_tools(
            self.registry,
            self.backend,
            search_ttl=settings.cache_product_search_ttl,
            kit_ttl=settings.cache_kit_listing_ttl,
            default_model=settings.default_model_preference,
        )
        register_cart_tools(
            self.registry, self.backend, proposals, cart_view_ttl=settings.cache_cart_view_ttl
        )
        register_proposal_tools(
            self.registry, self.backend, proposals, default_model=settings.default_model_preference
        )

        if self.llm is None:
            self.llm = GeminiClient(
                api_key=settings.gemini_api_key,
                model=settings.llm_model,
                base_url=settings.llm_base_url,
                timeout=settings.llm_request_timeout,
                retry_config=RetryConfig(max_attempts=settings.llm_max_attempts),
            )
        if self.telemetry is None:
            self.telemetry = UsageTelemetry(
                endpoint=settings.analytics_endpoint,
                secret=settings.analytics_secret,
                input_per_million=settings.cost_input_per_million,
                output_per_million=settings.cost_output_per_million,
                timeout=settings.analytics_timeout,
            )

        self.orchestrator = AgentOrchestrator(
            llm=self.llm,
            registry=self.registry,
            history=self.history,
            sessions=self.sessions,
            rate_limiter=RateLimiter(
                self.store, limit=settings.rate_limit_requests, window=settings.rate_limit_window
            ),
            sanitizer=InputSanitizer(),
            audit=AuditTrail(self.session_factory, debug=settings.audit_debug),
            telemetry=self.telemetry,
            system_instruction=load_system_prompt(),
            generation_config=settings.generation_config,
            max_steps=settings.agent_max_steps,
            time_budget=settings.agent_time_budget,
            analytics_salt=settings.analytics_salt,
        )
        logger.info(f"Assistant ready (model {settings.llm_model}, {len(self.registry.tools)} tools)")
        return self

    async def close(self):
        if self.telemetry is not None:
            await self.telemetry.aclose()
        if self.llm is not None:
            await self.llm.aclose()
        if self.store is not None:
            await self.store.close()
        logger.info("Assistant shut down")
