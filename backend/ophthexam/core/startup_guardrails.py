from __future__ import annotations

from ophthexam.core.config import Settings


class StartupGuardrailError(RuntimeError):
    pass


WEAK_SIGNING_KEYS = {
    "",
    "replace-with-strong-session-key",
    "changeme",
    "change-me",
    "change_me",
    "secret",
    "test-session-signing-key",
}


def validate_startup_security_guardrails(settings: Settings) -> None:
    if settings.is_local_dev:
        return

    key = (settings.session_signing_key or "").strip()
    weak_values = {value.lower() for value in WEAK_SIGNING_KEYS}

    errors: list[str] = []
    if key.lower() in weak_values:
        errors.append("SESSION_SIGNING_KEY is using a known weak/default value")
    if len(key) < 32:
        errors.append("SESSION_SIGNING_KEY must be at least 32 characters in non-dev")
    if settings.enable_dev_auth:
        errors.append("ENABLE_DEV_AUTH must be false in non-dev")

    if errors:
        raise StartupGuardrailError("; ".join(errors))
