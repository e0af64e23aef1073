"""
Model Gateway
Single choke point for every language-model call.

Each invocation returns the typed output plus a token-usage report and writes
exactly one TokenUsageRecord to the ledger, whether the call succeeded or not.
The gateway never retries; `retry_provider_call` is the helper callers use
when they want a retry policy.
"""
import asyncio
import math
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar
from loguru import logger
from pydantic import BaseModel
from leadify.config import get_settings
from leadify.models.token_usage import OperationType, TokenUsageRecord, UsageReport
from leadify.services.token_ledger import LedgerWriteFailure, TokenLedger, get_token_ledger
from leadify.utils.cost_tracker import CostTracker, calculate_cost, get_cost_tracker
from leadify.utils.metrics import MetricsRegistry
from leadify.utils.observability import log_llm_call

T = TypeVar('T')


class ProviderError(Exception):
    """
    Upstream model call failed.

    `retryable` separates transient failures (rate limit, timeout, 5xx,
    malformed output) from permanent ones (auth, invalid request).
    """

    def __init__(
        self,
        message: str,
        kind: str = "unknown",
        retryable: bool = True,
        operation_type: OperationType | None = None
    ):
        super().__init__(message)
        self.kind = kind
        self.retryable = retryable
        self.operation_type = operation_type


class ProviderTimeout(ProviderError):
    """The caller-supplied timeout expired before the provider answered."""

    def __init__(self, message: str, operation_type: OperationType | None = None):
        super().__init__(message, kind="timeout", retryable=True, operation_type=operation_type)


def categorize_provider_error(error: BaseException) -> tuple[str, bool]:
    """
    Map a provider exception to (kind, retryable) from its message.
    Unknown errors are treated as transient.
    """
    error_msg = str(error).lower()

    if ("rate" in error_msg and "limit" in error_msg) or "429" in error_msg:
        return "rate_limit", True
    if "timeout" in error_msg or "timed out" in error_msg:
        return "timeout", True
    if any(code in error_msg for code in ["500", "502", "503", "504"]):
        return "server_error", True
    if "authentication" in error_msg or "api key" in error_msg or "401" in error_msg:
        return "authentication", False
    if "invalid" in error_msg and "request" in error_msg:
        return "invalid_request", False
    if "validation" in error_msg or "malformed" in error_msg or "unexpected model behavior" in error_msg:
        return "malformed_response", True
    return "unknown", True


def estimate_tokens(text: str, chars_per_token: int | None = None) -> int:
    """ceil(len / chars_per_token); the documented policy when usage is missing."""
    chars_per_token = chars_per_token or get_settings().chars_per_token_estimate
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def _as_text(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, BaseModel):
        return output.model_dump_json()
    return str(output)


def _first_int(source: Any, *names: str) -> Optional[int]:
    for name in names:
        value = getattr(source, name, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _read_usage(result: Any) -> tuple[Optional[int], Optional[int]]:
    usage_fn = getattr(result, "usage", None)
    if not callable(usage_fn):
        return None, None
    usage = usage_fn()
    if usage is None:
        return None, None
    prompt = _first_int(usage, "input_tokens", "request_tokens", "prompt_tokens")
    completion = _first_int(usage, "output_tokens", "response_tokens", "completion_tokens")
    return prompt, completion


def resolve_model_name(agent: Any) -> str:
    model = getattr(agent, "model", None)
    if isinstance(model, str):
        return model
    name = getattr(model, "model_name", None)
    if isinstance(name, str):
        system = getattr(model, "system", None)
        return f"{system}:{name}" if isinstance(system, str) else name
    return "unknown"


@dataclass
class GatewayResult(Generic[T]):
    """Typed output of one invocation plus its usage accounting."""
    output: T
    usage: UsageReport
    record_id: str
    duration_ms: float


class ModelGateway:
    """
    Wraps pydantic-ai agents (or anything exposing `async run(prompt)`).

    Usage:
        >>> gateway = ModelGateway()
        >>> result = await gateway.invoke(
        ...     OperationType.INTENT_CLASSIFICATION, router_agent, prompt,
        ...     conversation_id="c-1", agent_id="agent-7",
        ... )
        >>> result.output.intent
    """

    def __init__(
        self,
        ledger: TokenLedger | None = None,
        metrics: MetricsRegistry | None = None,
        cost_tracker: CostTracker | None = None,
        timeout_seconds: float | None = None
    ):
        self.ledger = ledger or get_token_ledger()
        self.metrics = metrics or MetricsRegistry()
        self.cost_tracker = cost_tracker or get_cost_tracker()
        self.timeout_seconds = timeout_seconds or get_settings().llm_timeout_seconds

    async def invoke(
        self,
        operation_type: OperationType,
        agent: Any,
        prompt: str,
        *,
        conversation_id: str | None = None,
        agent_id: str | None = None,
        timeout: float | None = None,
        model: str | None = None,
        deps: Any = None
    ) -> GatewayResult:
        """
        Run one model call.

        Raises:
            ProviderTimeout: The timeout expired
            ProviderError: Any other provider failure (see `retryable`)
        """
        timeout = timeout or self.timeout_seconds
        model_name = model or resolve_model_name(agent)
        operation = operation_type.value
        start = time.perf_counter()

        self.metrics.gateway_calls.inc(operation=operation)
        logger.debug(f"🛰️ Gateway call: {operation} on {model_name} (timeout={timeout}s)")

        try:
            if deps is not None:
                coro = agent.run(prompt, deps=deps)
            else:
                coro = agent.run(prompt)
            result = await asyncio.wait_for(coro, timeout=timeout)

        except asyncio.CancelledError:
            await self._record_failure(
                operation_type, model_name, prompt, start, "cancelled", conversation_id, agent_id
            )
            raise

        except asyncio.TimeoutError as e:
            await self._record_failure(
                operation_type, model_name, prompt, start, f"timed out after {timeout}s",
                conversation_id, agent_id
            )
            self.metrics.gateway_errors.inc(operation=operation, kind="timeout")
            logger.warning(f"⏱️ {operation} timed out after {timeout}s")
            raise ProviderTimeout(f"{operation} timed out after {timeout}s", operation_type) from e

        except Exception as e:
            if isinstance(e, ProviderError):
                kind, retryable = e.kind, e.retryable
            else:
                kind, retryable = categorize_provider_error(e)
            await self._record_failure(
                operation_type, model_name, prompt, start, str(e), conversation_id, agent_id
            )
            self.metrics.gateway_errors.inc(operation=operation, kind=kind)
            if retryable:
                logger.warning(f"⚠️ {operation} failed ({kind}): {e}")
            else:
                logger.error(f"🚨 {operation} failed permanently ({kind}): {e}")
            if isinstance(e, ProviderError):
                raise
            raise ProviderError(f"{operation} failed: {e}", kind, retryable, operation_type) from e

        duration_ms = (time.perf_counter() - start) * 1000
        output = result.output
        usage = self._build_usage(model_name, prompt, output, result)

        record_id = await self._write_record(
            TokenUsageRecord(
                operation_type=operation_type,
                model=model_name,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
                estimated=usage.estimated,
                conversation_id=conversation_id,
                agent_id=agent_id,
                success=True,
                response_time_ms=round(duration_ms, 2),
                cost_usd=calculate_cost(model_name, usage.prompt_tokens, usage.completion_tokens),
            )
        )

        self.metrics.gateway_duration.observe(duration_ms / 1000, operation=operation)

        return GatewayResult(output=output, usage=usage, record_id=record_id, duration_ms=duration_ms)

    def _build_usage(self, model_name: str, prompt: str, output: Any, result: Any) -> UsageReport:
        prompt_tokens, completion_tokens = _read_usage(result)
        if prompt_tokens is None and completion_tokens is None:
            return UsageReport(
                model=model_name,
                prompt_tokens=estimate_tokens(prompt),
                completion_tokens=estimate_tokens(_as_text(output)),
                estimated=True,
            )
        return UsageReport(
            model=model_name,
            prompt_tokens=prompt_tokens or 0,
            completion_tokens=completion_tokens or 0,
        )

    async def _record_failure(
        self,
        operation_type: OperationType,
        model_name: str,
        prompt: str,
        start: float,
        error_message: str,
        conversation_id: str | None,
        agent_id: str | None
    ) -> None:
        prompt_tokens = estimate_tokens(prompt)
        await self._write_record(
            TokenUsageRecord(
                operation_type=operation_type,
                model=model_name,
                prompt_tokens=prompt_tokens,
                completion_tokens=0,
                total_tokens=prompt_tokens,
                estimated=True,
                conversation_id=conversation_id,
                agent_id=agent_id,
                success=False,
                error_message=error_message[:500],
                response_time_ms=round((time.perf_counter() - start) * 1000, 2),
                cost_usd=calculate_cost(model_name, prompt_tokens, 0),
            )
        )

    async def _write_record(self, record: TokenUsageRecord) -> str:
        """Ledger failures are logged for reconciliation and never fail the call."""
        operation = record.operation_type.value
        try:
            await self.ledger.append(record)
        except LedgerWriteFailure as e:
            self.metrics.ledger_write_failures.inc(operation=operation)
            logger.bind(
                event_type="ledger_write_failure",
                reconciliation_record=record.model_dump(mode="json"),
            ).error(f"💾 Ledger write failed for {operation} ({record.record_id}): {e}")
        else:
            self.cost_tracker.track(operation, record.total_tokens, record.cost_usd)

        self.metrics.track_llm_usage(
            operation, record.prompt_tokens, record.completion_tokens, record.cost_usd, record.estimated
        )
        log_llm_call(
            operation_type=operation,
            model=record.model,
            prompt_tokens=record.prompt_tokens,
            completion_tokens=record.completion_tokens,
            cost_usd=record.cost_usd,
            duration_ms=record.response_time_ms or 0.0,
            success=record.success,
            estimated=record.estimated,
            error=record.error_message,
            conversation_id=record.conversation_id,
        )
        return record.record_id


async def retry_provider_call(
    call: Callable[[], Awaitable[T]],
    max_retries: int | None = None
) -> T:
    """
    Caller-side retry policy: exponential backoff with jitter on retryable
    ProviderErrors. Permanent errors are raised immediately.

    Example:
        >>> result = await retry_provider_call(lambda: engine.handle_turn(request))
    """
    settings = get_settings()
    max_attempts = max_retries or settings.max_retries
    min_wait = settings.retry_min_wait_seconds
    max_wait = settings.retry_max_wait_seconds

    for attempt in range(1, max_attempts + 1):
        try:
            return await call()
        except ProviderError as e:
            if not e.retryable:
                logger.error(f"🚨 Permanent provider failure ({e.kind}): {e}")
                raise
            if attempt == max_attempts:
                logger.error(f"❌ Max retries ({max_attempts}) exhausted. Last error: {e}")
                raise

            wait_time = min(min_wait * (2 ** (attempt - 1)), max_wait)
            # 20% jitter
            wait_time = wait_time * (0.8 + 0.4 * random.random())

            logger.info(f"⏳ Retrying in {wait_time:.1f}s... (error: {e.kind}, attempt {attempt}/{max_attempts})")
            await asyncio.sleep(wait_time)

    raise RuntimeError("retry loop exited without result")
