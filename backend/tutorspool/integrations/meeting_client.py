"""Online meeting provider integration client.

Creates a meeting room for a paid online session and returns its join URL
and passcode. Server-to-server calls are authenticated with a short-lived
management JWT signed with the app secret.
"""

from __future__ import annotations

from datetime import datetime
import logging
import secrets
import string
import time
from typing import Any, Protocol, cast
import uuid

import httpx
import jwt
from pydantic import SecretStr

from ..core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class MeetingProviderError(RuntimeError):
    """Raised when the meeting provider cannot create or return a meeting."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        details: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class MeetingClient(Protocol):
    def create_meeting(
        self,
        *,
        title: str,
        start_time: datetime,
        duration_minutes: int,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        ...


class MeetingProviderClient:
    """HTTP client for the meeting provider REST API."""

    def __init__(
        self,
        *,
        access_key: str,
        app_secret: str | SecretStr,
        base_url: str,
        timeout: float = 10.0,
    ) -> None:
        self._access_key = access_key
        self._app_secret = (
            app_secret.get_secret_value() if isinstance(app_secret, SecretStr) else app_secret
        )
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._mgmt_token: str | None = None
        self._mgmt_token_refresh_at: float = 0.0

    def _generate_management_token(self) -> str:
        """HS256 JWT identifying this server to the provider."""
        now = int(time.time())
        payload = {
            "access_key": self._access_key,
            "type": "management",
            "jti": str(uuid.uuid4()),
            "iat": now,
            "nbf": now,
            "exp": now + 3600,
        }
        token: str = jwt.encode(payload, self._app_secret, algorithm="HS256")
        return token

    def _get_management_token(self) -> str:
        now = time.monotonic()
        if self._mgmt_token is None or now >= self._mgmt_token_refresh_at:
            self._mgmt_token = self._generate_management_token()
            # Token lives 60 minutes; rotate after 50
            self._mgmt_token_refresh_at = now + (50 * 60)
        return self._mgmt_token

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}/{path.lstrip('/')}"
        request_headers = {
            "Authorization": f"Bearer {self._get_management_token()}",
            "Content-Type": "application/json",
            **(headers or {}),
        }

        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.request(method, url, headers=request_headers, json=json_body)
        except httpx.TransportError as exc:
            logger.error("Meeting provider unreachable for %s %s: %s", method, path, exc)
            raise MeetingProviderError(
                message=f"Meeting provider unreachable: {exc}",
                status_code=None,
            ) from exc

        if response.status_code >= 400:
            try:
                parsed = response.json()
                error_body = parsed if isinstance(parsed, dict) else {"raw": response.text[:500]}
            except ValueError:
                error_body = {"raw": response.text[:500]}

            message = error_body.get("message") or error_body.get("error") or response.text
            logger.error(
                "Meeting provider error %s for %s %s: %s",
                response.status_code,
                method,
                path,
                response.text[:500],
            )
            raise MeetingProviderError(
                message=message,
                status_code=response.status_code,
                details=error_body.get("details"),
            )

        return cast(dict[str, Any], response.json())

    def create_meeting(
        self,
        *,
        title: str,
        start_time: datetime,
        duration_minutes: int,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Create a meeting and return ``{"id", "join_url", "passcode"}``.

        The idempotency key (the booking id) lets the provider return the
        same meeting when a retry repeats a call that already succeeded.
        """
        body = {
            "title": title,
            "start_time": start_time.isoformat(),
            "duration_minutes": duration_minutes,
        }
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        data = self._request("POST", "meetings", json_body=body, headers=headers)

        join_url = data.get("join_url") or data.get("meeting_link")
        if not join_url:
            raise MeetingProviderError(
                message="Meeting provider response has no join URL",
                details={"response_keys": sorted(data.keys())},
            )
        return {
            "id": data.get("id"),
            "join_url": join_url,
            "passcode": data.get("passcode") or data.get("password"),
        }


def _meet_code() -> str:
    alphabet = string.ascii_lowercase + string.digits
    parts = ["".join(secrets.choice(alphabet) for _ in range(size)) for size in (3, 4, 3)]
    return "-".join(parts)


class FakeMeetingClient:
    """In-memory stub for testing/non-production environments."""

    def __init__(self, **kwargs: Any) -> None:
        self._calls: list[dict[str, Any]] = []
        self._error: MeetingProviderError | None = None

    @property
    def calls(self) -> list[dict[str, Any]]:
        return list(self._calls)

    def set_error(self, error: MeetingProviderError | None) -> None:
        """Make every following create_meeting call raise ``error``."""
        self._error = error

    def clear_errors(self) -> None:
        self._error = None

    def create_meeting(
        self,
        *,
        title: str,
        start_time: datetime,
        duration_minutes: int,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        self._calls.append(
            {
                "method": "create_meeting",
                "title": title,
                "start_time": start_time,
                "duration_minutes": duration_minutes,
                "idempotency_key": idempotency_key,
            }
        )
        if self._error is not None:
            raise self._error
        code = _meet_code()
        return {
            "id": f"fake_meeting_{uuid.uuid4().hex[:12]}",
            "join_url": f"https://meet.example.com/{code}",
            "passcode": secrets.token_hex(3),
        }


def build_meeting_client(
    config: Settings | None = None,
) -> MeetingProviderClient | FakeMeetingClient:
    """Real client when the provider is enabled and configured, otherwise the fake."""
    config = config or default_settings
    if not config.meeting_provider_enabled:
        return FakeMeetingClient()

    access_key = (config.meeting_provider_access_key or "").strip()
    app_secret = config.meeting_provider_app_secret.get_secret_value().strip()
    missing = [
        name
        for name, value in (
            ("MEETING_PROVIDER_ACCESS_KEY", access_key),
            ("MEETING_PROVIDER_APP_SECRET", app_secret),
        )
        if not value
    ]
    if missing:
        logger.error("Meeting provider enabled but not configured: missing %s", ", ".join(missing))
        raise MeetingProviderError(
            message="Meeting provider is enabled but not configured",
            details={"missing": missing},
        )

    return MeetingProviderClient(
        access_key=access_key,
        app_secret=app_secret,
        base_url=config.meeting_provider_base_url,
        timeout=config.meeting_provider_timeout_seconds,
    )
