"""
Structured Logging & Observability
Logging that's both human-readable and machine-parseable.
"""
import sys
from loguru import logger
from typing import Any, Dict
from leadify.config import get_settings


def configure_logging():
    """
    Configure loguru for the service.

    In development: Human-readable colorized output
    In production: Structured JSON logs for ingestion
    """
    settings = get_settings()

    logger.remove()

    if not settings.enable_structured_logging:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            level=settings.log_level,
            colorize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level=settings.log_level,
            serialize=True,
        )

    logger.info(f"Logging configured: level={settings.log_level}, structured={settings.enable_structured_logging}")


def log_turn(
    conversation_id: str,
    stage: str,
    intent: str,
    duration_ms: float | None = None,
    **context
):
    """
    Structured logging for a processed conversation turn.

    Example:
        >>> log_turn(
        ...     conversation_id="c-123",
        ...     stage="awaiting_need",
        ...     intent="qualification",
        ...     duration_ms=812.4,
        ...     score=45,
        ... )
    """
    log_data = {
        "event_type": "turn",
        "conversation_id": conversation_id,
        "stage": stage,
        "intent": intent,
    }

    if duration_ms is not None:
        log_data["duration_ms"] = round(duration_ms, 2)

    log_data.update(context)

    logger.bind(**log_data).info(f"Turn | {conversation_id} | {intent} -> {stage}")


def log_llm_call(
    operation_type: str,
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    cost_usd: float,
    duration_ms: float,
    success: bool = True,
    estimated: bool = False,
    error: str | None = None,
    **context
):
    """
    Structured logging for model gateway calls.

    Enables cost analysis, performance monitoring, and error tracking.
    """
    log_data = {
        "event_type": "llm_call",
        "operation_type": operation_type,
        "model": model,
        "tokens": {
            "prompt": prompt_tokens,
            "completion": completion_tokens,
            "total": prompt_tokens + completion_tokens,
            "estimated": estimated,
        },
        "cost_usd": round(cost_usd, 6),
        "duration_ms": round(duration_ms, 2),
        "success": success,
        **context,
    }

    if error:
        log_data["error"] = error

    level = "INFO" if success else "ERROR"
    logger.bind(**log_data).log(
        level,
        f"LLM Call: {operation_type} | {model} | {prompt_tokens + completion_tokens} tokens | ${cost_usd:.4f}"
    )


def log_business_event(
    event_type: str,
    conversation_id: str,
    **details: Dict[str, Any]
):
    """
    Log business-critical events for analytics.

    Examples:
        - Stage transitions
        - Lead qualified / opted out
        - Human handoff
    """
    log_data = {
        "event_type": event_type,
        "conversation_id": conversation_id,
        **details
    }

    logger.bind(**log_data).success(f"Business Event: {event_type}")
