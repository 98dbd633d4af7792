"""Job status notifications delivered over a webhook."""

from __future__ import annotations

import urllib.error
import urllib.request
from dataclasses import dataclass
from urllib.parse import urlsplit

SEND_JOB_STATUS_JOB_TYPE = "send_job_status"


class WebhookError(Exception):
    """Raised when a webhook notification could not be delivered."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class NotificationConfig:
    """Where job status notifications go; timeout is in seconds (0 = none)."""

    webhook_url: str | None = None
    webhook_timeout: float = 0.0

    @classmethod
    def from_webhook(cls, url: str, timeout: float) -> NotificationConfig:
        """Build a config for a webhook URL; an empty URL disables it."""
        if url == "":
            return cls()
        parsed = urlsplit(url)
        if not (parsed.scheme or url.startswith("/")) or " " in url:
            raise ValueError("invalid job status webhook url")
        return cls(webhook_url=url, webhook_timeout=timeout)

    def should_send_job_status(self) -> bool:
        return self.webhook_url is not None

    def send_job_status(self, content: str) -> None:
        """Deliver a job status notification through every configured channel."""
        self.send_job_status_webhook(content)

    def send_job_status_webhook(self, content: str) -> None:
        """POST the content as JSON to the webhook, expecting a 200 reply."""
        if self.webhook_url is None:
            return

        try:
            request = urllib.request.Request(
                self.webhook_url,
                data=content.encode("utf-8"),
                method="POST",
                headers={"Content-Type": "application/json"},
            )
        except ValueError as exc:
            raise WebhookError(f"error while creating webhook request: {exc}") from exc

        timeout = self.webhook_timeout if self.webhook_timeout > 0 else None
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                status = response.status
        except urllib.error.HTTPError as exc:
            status = exc.code
            exc.close()
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise WebhookError(f"error while sending webhook request: {exc}") from exc

        if status != 200:
            raise WebhookError(
                f"webhook endpoint responded with an unexpected status code: {status}",
                status_code=status,
            )