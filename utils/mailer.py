from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from utils.config import Settings
from utils.errors import Misconfigured, UpstreamFailure
from utils.logger import get_logger

logger = get_logger("mailer")

_RESEND_EMAILS_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = httpx.Timeout(15.0, connect=5.0)


class ResendMailer:
    """Sends transactional email through the Resend REST API."""

    def __init__(self, api_key: Optional[str], sender: str, client: Optional[httpx.Client] = None) -> None:
        self._api_key = api_key
        self.sender = sender
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResendMailer":
        return cls(settings.resend_api_key, settings.mail_from)

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def send(
        self,
        *,
        to: Union[str, Sequence[str]],
        subject: str,
        text: Optional[str] = None,
        html: Optional[str] = None,
        sender: Optional[str] = None,
    ) -> Optional[str]:
        if not self._api_key:
            raise Misconfigured("RESEND_API_KEY not set")

        recipients: List[str] = [to] if isinstance(to, str) else list(to)
        payload: Dict[str, Any] = {"from": sender or self.sender, "to": recipients, "subject": subject}
        if text is not None:
            payload["text"] = text
        if html is not None:
            payload["html"] = html

        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            if self._client is not None:
                response = self._client.post(_RESEND_EMAILS_URL, json=payload, headers=headers)
            else:
                response = httpx.post(
                    _RESEND_EMAILS_URL, json=payload, headers=headers, timeout=_RESEND_TIMEOUT
                )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Resend send failed for %d recipient(s): %s", len(recipients), exc)
            raise UpstreamFailure("Failed to send email", status_code=500) from exc

        try:
            body = response.json()
        except ValueError:
            logger.warning("Resend accepted the message but returned a non-JSON body")
            return None
        return body.get("id") if isinstance(body, dict) else None
