"""Structured diagnostic blocks printed before the task exits on a fatal error."""

from typing import List

from .exceptions import UITestTaskError
from .logging_config import mask_secrets


RULE = "=" * 60


def render_diagnostic(error: Exception, title: str = "Task failure") -> str:
    """
    Render an error as a human-readable diagnostic block.

    Includes the error type, code, HTTP status and URL when known, and the
    remediation checklist. Registered secrets are masked.
    """
    lines: List[str] = [RULE, f"{title}: {error.__class__.__name__}", RULE]

    if isinstance(error, UITestTaskError):
        lines.append(f"Message:     {error.message}")
        if error.error_code:
            lines.append(f"Error code:  {error.error_code}")
        status = error.context.get("status_code")
        if status is not None:
            lines.append(f"HTTP status: {status}")
        method = error.context.get("method")
        url = error.context.get("url")
        if url:
            lines.append(f"Attempted:   {method + ' ' if method else ''}{url}")
        for key in ("entity_kind", "name", "step", "exit_code", "command"):
            value = error.context.get(key)
            if value not in (None, ""):
                lines.append(f"{key.replace('_', ' ').capitalize() + ':':<13}{value}")
        attempts = error.context.get("attempts") or []
        if attempts:
            lines.append("Attempts:")
            for attempt in attempts:
                lines.append(
                    f"  - {attempt.get('strategy')}: {attempt.get('status_code')}"
                )
        if error.remediation:
            lines.append("Remediation checklist:")
            for item in error.remediation:
                lines.append(f"  [ ] {item}")
    else:
        lines.append(f"Message:     {error}")

    lines.append(RULE)
    return mask_secrets("\n".join(lines))
