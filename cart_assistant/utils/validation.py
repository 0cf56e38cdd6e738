"""Configuration and environment validation."""
from cart_assistant.analytics.logger import logger
from cart_assistant.utils.config import DEFAULT_PROPOSAL_SECRET


def validate_config(settings) -> dict:
    """Validate application configuration."""
    issues = []
    warnings = []

    if not settings.gemini_api_key:
        issues.append("GEMINI_API_KEY is not set - agent will not function")

    if settings.llm_request_timeout >= settings.agent_time_budget:
        issues.append(
            "LLM_REQUEST_TIMEOUT must be shorter than AGENT_TIME_BUDGET "
            f"({settings.llm_request_timeout}s >= {settings.agent_time_budget}s)"
        )

    if settings.agent_max_steps < 1:
        issues.append("AGENT_MAX_STEPS must be at least 1")

    # Warning validations
    if settings.proposal_secret == DEFAULT_PROPOSAL_SECRET:
        warnings.append("PROPOSAL_SECRET uses the default value - proposals can be forged")

    if not settings.cache_enabled:
        warnings.append("CACHE_ENABLED is false - using the in-process store (single worker only)")

    if bool(settings.analytics_endpoint) != bool(settings.analytics_secret):
        warnings.append("ANALYTICS_ENDPOINT and ANALYTICS_SECRET must both be set - telemetry disabled")

    if settings.session_absolute_lifetime == 0:
        warnings.append("SESSION_ABSOLUTE_LIFETIME is 0 - sessions can be refreshed indefinitely")

    for issue in issues:
        logger.error(f"Config issue: {issue}")
    for warning in warnings:
        logger.warning(f"Config warning: {warning}")

    return {
        "valid": len(issues) == 0,
        "issues": issues,
        "warnings": warnings,
    }
