"""Keeping secrets and conversation text out of logs.

Channel secrets, API keys and message text never appear in log events. Events
carry sizes, hashes, ids and provider/model names instead, under keys such as
`prompt_chars` or `secret_sha256`. Only the exact keys in FORBIDDEN_KEYS are blocked.

Debug captures of a conversation go through
chatgate.services.chat.messages.redact_for_log, which relies on truncate_text.
"""

import os

import structlog

FORBIDDEN_KEYS = frozenset(
    {
        "prompt",
        "content",
        "messages",
        "api_key",
        "secret",
        "bearer",
        "token",
        "password",
        "raw_body",
    }
)

# Environments where a forbidden key is a programming error rather than a warning
_STRICT_ENVS = ("local", "test")


def truncate_text(value: str, limit: int) -> str:
    """First `limit` characters of value; codepoint based, so never splits a character."""
    return value[:limit] if limit > 0 else ""


def safe_kv(*, _env: str | None = None, **kwargs) -> dict:
    """Return kwargs unchanged after checking no key names sensitive data.

    In local and test environments a forbidden key raises ValueError so the
    offending call site fails loudly; elsewhere a log.safe_kv_violation warning is
    logged and the event goes through.

    Usage:
        logger.info("chat.request.started", **safe_kv(
            provider="openai",
            turns=3,
            prompt_chars=1234,  # derived value, allowed
        ))

    Args:
        _env: Environment override for tests. Defaults to CHATGATE_ENV.
    """
    violations = [key for key in kwargs if key in FORBIDDEN_KEYS]
    if not violations:
        return kwargs

    env = _env or os.environ.get("CHATGATE_ENV", "local")
    if env in _STRICT_ENVS:
        raise ValueError(f"Forbidden log keys: {violations}")

    structlog.get_logger(__name__).warning("log.safe_kv_violation", forbidden_keys=violations)
    return kwargs
