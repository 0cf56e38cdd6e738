"""Agent loop: drives the LLM through tool calls until it answers."""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from cart_assistant.agent.context import RequestContext
from cart_assistant.agent.llm_client import FINISH_MAX_TOKENS, FINISH_STOP, GeminiClient
from cart_assistant.analytics.audit import AuditTrail
from cart_assistant.analytics.logger import logger
from cart_assistant.analytics.telemetry import UsageLedger, UsageTelemetry
from cart_assistant.mcp.mcp_client import ToolRegistry
from cart_assistant.memory.conversation_store import SENDER_AI, SENDER_USER, ConversationStore
from cart_assistant.memory.session_manager import SessionManager
from cart_assistant.utils.exceptions import AuthError, PersistenceError, RateLimitError, ValidationError
from cart_assistant.utils.guardrails import InputSanitizer
from cart_assistant.utils.rate_limiter import RateLimiter

PROMPT_FILE = Path(__file__).parent / "prompts" / "cart_assistant.txt"

FALLBACK_PROMPT = (
    "You are a shopping assistant for an online store. Use the available tools to search "
    "the catalog and manage the user's cart. Never invent product ids. Before adding "
    "several products at once, create a proposal and wait for the user to confirm it."
)

FAILURE_MESSAGE = "Sorry, something went wrong on our side. Please try again in a moment."
EMPTY_ANSWER_MESSAGE = "Sorry, I couldn't finish that request. Could you rephrase it?"
TIMEOUT_MESSAGE = "Sorry, this is taking longer than expected. Please try again."
INVALID_SESSION_MESSAGE = "Your session has expired. Please reload the page to start a new chat."
RATE_LIMITED_MESSAGE = "You're sending messages too quickly. Please wait a moment and try again."
INVALID_MESSAGE = "Sorry, I can't process that message."


class LoopState(str, Enum):
    INIT = "init"
    ITERATING = "iterating"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"
    STEP_LIMIT = "step_limit"  # ran out of iterations while the model still called tools
    FAILED = "failed"


@dataclass
class ChatResult:
    success: bool
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None  # invalid_session, rate_limited, invalid_message, internal
    retry_after: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": self.success, "message": self.message, "metadata": self.metadata}
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        return result


@dataclass
class _Run:
    started: float
    state: LoopState = LoopState.INIT
    iterations: int = 0
    tools_called: List[str] = field(default_factory=list)
    answer_parts: List[str] = field(default_factory=list)


def load_system_prompt(path: Path = PROMPT_FILE) -> str:
    """System instruction text, falling back to a built-in prompt."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read().strip()
    except FileNotFoundError:
        logger.warning(f"Prompt file not found at {path}, using fallback prompt")
    except OSError as e:
        logger.error(f"Error loading prompt file: {e}, using fallback prompt")
    return FALLBACK_PROMPT


class AgentOrchestrator:
    """Runs one user message through the session, rate and input gates and
    then the bounded tool-calling loop.

    The loop stops when the model finishes without calling a tool
    (``COMPLETED``), reports an unexpected finish reason (``ABORTED``), the
    time budget measured from the first LLM call runs out (``TIMED_OUT``) or
    ``max_steps`` LLM calls have been made (``STEP_LIMIT``). Whatever the exit,
    usage telemetry is flushed and a single ``chat_completed`` audit event is
    written.
    """

    def __init__(
        self,
        llm: GeminiClient,
        registry: ToolRegistry,
        history: ConversationStore,
        sessions: SessionManager,
        rate_limiter: RateLimiter,
        sanitizer: InputSanitizer,
        audit: AuditTrail,
        telemetry: UsageTelemetry,
        system_instruction: str,
        generation_config: Dict[str, Any],
        max_steps: int = 5,
        time_budget: float = 25.0,
        analytics_salt: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.llm = llm
        self.registry = registry
        self.history = history
        self.sessions = sessions
        self.rate_limiter = rate_limiter
        self.sanitizer = sanitizer
        self.audit = audit
        self.telemetry = telemetry
        self.system_instruction = system_instruction
        self.generation_config = generation_config
        self.max_steps = max_steps
        self.time_budget = time_budget
        self.analytics_salt = analytics_salt
        self._clock = clock

    async def admit(self, message: str, context: RequestContext) -> str:
        """Session, rate-limit and input checks, in that order.

        Returns the sanitized message or raises AuthError, RateLimitError or
        ValidationError.
        """
        if not await self.sessions.validate(context.session_id, context.user_id, context.client_ip):
            await self.audit.log(
                "invalid_session",
                {"well_formed": SessionManager.is_well_formed(context.session_id)},
                context,
            )
            raise AuthError("Invalid or expired session")
        await self.sessions.refresh(context.session_id)

        identifier = context.rate_limit_identifier
        if not await self.rate_limiter.check_limit(identifier):
            retry_after = self.rate_limiter.retry_after(identifier)
            await self.audit.log("rate_limited", {"retry_after": retry_after}, context)
            raise RateLimitError("Rate limit exceeded", retry_after=retry_after)

        checked = self.sanitizer.check(message)
        if not checked.ok:
            await self.audit.log(
                "security_violation",
                {"reason": checked.reason, "message_length": len(message) if isinstance(message, str) else 0},
                context,
            )
            raise ValidationError("Invalid message", reason=checked.reason)
        return checked.message

    async def process_message(self, message: str, context: RequestContext) -> ChatResult:
        """Answer one user message; never raises."""
        try:
            clean = await self.admit(message, context)
        except AuthError:
            return ChatResult(False, INVALID_SESSION_MESSAGE, {"iterations": 0}, error="invalid_session")
        except RateLimitError as e:
            return ChatResult(
                False, RATE_LIMITED_MESSAGE, {"iterations": 0},
                error="rate_limited", retry_after=e.retry_after,
            )
        except ValidationError:
            return ChatResult(False, INVALID_MESSAGE, {"iterations": 0}, error="invalid_message")

        return await self.run(clean, context)

    async def run(self, message: str, context: RequestContext) -> ChatResult:
        """The tool-calling loop for an already admitted message."""
        ledger = UsageLedger(
            conversation_id=context.session_id,
            user_id=context.analytics_user_id(self.analytics_salt),
            user_context={"user_id": context.user_id, "device": context.device},
        )
        ledger.add_user_message(message)

        run = _Run(started=self._clock())

        try:
            try:
                await self.history.append(context.session_id, SENDER_USER, message, user_id=context.user_id)
            except PersistenceError as e:
                run.state = LoopState.FAILED
                await self.audit.log_error("persist_user_message", e, context)
                result = ChatResult(False, FAILURE_MESSAGE, error="internal")
            else:
                run.started = self._clock()
                run.state = LoopState.ITERATING
                await self._iterate(run, context, ledger)

                answer = "".join(run.answer_parts).strip()
                if answer:
                    await self.history.append(context.session_id, SENDER_AI, answer, user_id=context.user_id)
                    ledger.add_ai_response(answer)
                elif run.state == LoopState.TIMED_OUT:
                    answer = TIMEOUT_MESSAGE
                else:
                    answer = EMPTY_ANSWER_MESSAGE
                result = ChatResult(True, answer)
        except Exception as e:
            run.state = LoopState.FAILED
            await self.audit.log_error(
                "process_message", e, context,
                {"iterations": run.iterations, "functions_called": run.tools_called},
            )
            result = ChatResult(False, FAILURE_MESSAGE, error="internal")
        finally:
            elapsed = round(self._clock() - run.started, 3)
            try:
                await self.telemetry.flush(ledger)
            except Exception as e:
                logger.warning(f"Telemetry flush failed: {e}")
            await self.audit.log(
                "chat_completed",
                {
                    "iterations": run.iterations,
                    "functions_called": run.tools_called,
                    "execution_time": elapsed,
                    "state": run.state.value,
                },
                context,
            )

        result.metadata = {
            "iterations": run.iterations,
            "state": run.state.value,
            "tools": run.tools_called,
        }
        return result

    async def _iterate(self, run: "_Run", context: RequestContext, ledger: UsageLedger):
        tool_defs = self.registry.function_declarations()

        while run.iterations < self.max_steps:
            elapsed = self._clock() - run.started
            if elapsed > self.time_budget:
                logger.warning(f"Agent loop timed out after {run.iterations} iterations ({elapsed:.1f}s)")
                await self.audit.log(
                    "timeout", {"iterations": run.iterations, "elapsed": round(elapsed, 3)}, context
                )
                run.state = LoopState.TIMED_OUT
                return

            run.iterations += 1
            history = await self.history.get_history(context.session_id)
            payload = self.llm.build_payload(
                history, tool_defs, self.system_instruction, self.generation_config
            )
            response = await self.llm.send(payload)
            ledger.record_usage(
                "initial" if run.iterations == 1 else "tool_response",
                response.prompt_tokens,
                response.output_tokens,
            )

            called_tool = False
            for part in response.parts:
                call = part.get("functionCall")
                if call:
                    called_tool = True
                    run.tools_called.append(await self._run_tool(call, context, ledger))
                elif isinstance(part.get("text"), str):
                    run.answer_parts.append(part["text"])

            finish_reason = response.finish_reason
            if finish_reason == FINISH_STOP and not called_tool:
                run.state = LoopState.COMPLETED
                return
            if finish_reason not in (FINISH_STOP, FINISH_MAX_TOKENS):
                logger.warning(f"Unusual finish reason from LLM: {finish_reason}")
                await self.audit.log(
                    "unusual_finish", {"finish_reason": finish_reason, "iteration": run.iterations}, context
                )
                run.state = LoopState.ABORTED
                return

        logger.info(f"Agent loop reached the step limit ({self.max_steps})")
        run.state = LoopState.STEP_LIMIT

    async def _run_tool(self, call: Dict[str, Any], context: RequestContext, ledger: UsageLedger) -> str:
        name = str(call.get("name") or "")
        args = call.get("args") or {}
        if not isinstance(args, dict):
            args = {}

        result = await self.registry.dispatch(name, args, context)
        result_payload = result.to_dict()
        logger.info(f"Tool {name} finished with status {result.status}")
        if result.exception is not None:
            await self.audit.log_error(
                "function_execution", result.exception, context, {"function": name, "args": args}
            )

        await self.history.append_function_call(context.session_id, name, args, user_id=context.user_id)
        try:
            await self.history.append_function_response(
                context.session_id, name, result_payload, user_id=context.user_id
            )
        except Exception as e:
            await self.audit.log(
                "orphaned_function_call",
                {"function": name, "error": str(e), "type": type(e).__name__},
                context,
            )
            raise

        ledger.add_tool_execution(name, args, result_payload)
        if self.registry.is_mutating(name):
            await self.audit.log(
                "cart_action",
                {"action": name, "args": args, "result": result.status},
                context,
            )
        return name

    async def get_history(self, user_id: int, limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
        """Paginated past conversations of a signed-in user."""
        return await self.history.get_user_conversations(user_id, limit=limit, offset=offset)
