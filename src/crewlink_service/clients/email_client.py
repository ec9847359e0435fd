"""Transactional email delivery through Resend."""

from __future__ import annotations

import asyncio
from html import escape
from typing import Any

import resend

from crewlink_service.logging import get_logger


class EmailClient:
    """
    Sends transactional emails. Delivery is best effort: failures are
    logged and never raised to the caller, whose state is already committed.
    """

    def __init__(
        self,
        *,
        enabled: bool,
        api_key: str | None,
        from_address: str,
        app_base_url: str,
    ) -> None:
        self._enabled = enabled and bool(api_key)
        self._api_key = api_key
        self._from_address = from_address
        self._app_base_url = app_base_url.rstrip("/")
        self._logger = get_logger(__name__)

    async def send(self, to: str, subject: str, html: str) -> bool:
        """Send one email. Returns True when the provider accepted it."""
        if not self._enabled:
            self._logger.debug("Email disabled, skipping send", extra={"subject": subject})
            return False

        params: dict[str, Any] = {
            "from": self._from_address,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        resend.api_key = self._api_key
        try:
            response = await asyncio.to_thread(resend.Emails.send, params)
        except Exception:
            self._logger.exception("Email delivery failed", extra={"subject": subject})
            return False

        self._logger.info(
            "Email sent",
            extra={"subject": subject, "email_id": response.get("id") if response else None},
        )
        return True

    async def send_bid_accepted(
        self,
        to: str,
        worker_name: str,
        job_title: str,
        job_id: str,
    ) -> bool:
        """Tell a worker their bid was accepted."""
        job_url = f"{self._app_base_url}/work/job/{job_id}"
        html = (
            f"<p>Hi {escape(worker_name)},</p>"
            f"<p>Your bid for <strong>{escape(job_title)}</strong> has been accepted.</p>"
            f'<p><a href="{escape(job_url)}">View the job</a> to coordinate the details '
            "with the hirer.</p>"
        )
        return await self.send(to, f'Your bid for "{job_title}" was accepted', html)
