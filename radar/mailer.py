"""Report delivery through the Resend HTTP API."""
from __future__ import annotations

import logging
import os
from typing import Any

import httpx

log = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
DEFAULT_SENDER = "E2 Market Intelligence <noreply@e-2.at>"
DEFAULT_RECIPIENT = "team@e-2.at"
_TIMEOUT = 15.0


def default_recipients() -> list[str]:
    raw = os.environ.get("REPORT_RECIPIENT_EMAIL") or DEFAULT_RECIPIENT
    return [r.strip() for r in raw.split(",") if r.strip()]


async def send_email(to: list[str], subject: str, html: str, sender: str | None = None) -> dict[str, Any]:
    """Send one message. Returns ``{"success": True, "id"}`` or ``{"success": False, "error"}``."""
    api_key = os.environ.get("RESEND_API_KEY", "").strip()
    if not api_key:
        return {"success": False, "error": "Email service not configured"}
    if not to:
        return {"success": False, "error": "No recipients"}

    payload = {
        "from": sender or os.environ.get("EMAIL_FROM") or DEFAULT_SENDER,
        "to": list(to),
        "subject": subject,
        "html": html,
    }
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(_TIMEOUT)) as client:
            resp = await client.post(
                RESEND_URL,
                json=payload,
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            )
    except httpx.HTTPError as exc:
        log.warning("Email send failed: %s", exc)
        return {"success": False, "error": str(exc) or exc.__class__.__name__}

    if resp.status_code >= 400:
        try:
            message = resp.json().get("message") or resp.text
        except ValueError:
            message = resp.text
        log.warning("Email send failed: HTTP %s %s", resp.status_code, message)
        return {"success": False, "error": f"HTTP {resp.status_code}: {message}"}

    try:
        data = resp.json()
    except ValueError:
        data = None
    message_id = data.get("id") if isinstance(data, dict) else None
    log.info("Report email sent to %d recipient(s) (id=%s)", len(to), message_id)
    return {"success": True, "id": message_id}
