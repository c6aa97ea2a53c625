from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol

import httpx

from .. import metrics
from ..config import Settings
from .errors import ProvisioningError

logger = logging.getLogger(__name__)

_TRANSIENT_STATUSES = frozenset({502, 503, 504})
_TOKEN_REFRESH_MARGIN_SECONDS = 60
_MAX_TOPIC_LENGTH = 200


@dataclass(frozen=True)
class MeetingCredentials:
    join_link: str
    host_link: Optional[str]
    meeting_id: str
    password: Optional[str]

    def as_columns(self) -> dict[str, Any]:
        return {
            "meeting_link": self.join_link,
            "host_link": self.host_link,
            "meeting_id": self.meeting_id,
            "meeting_password": self.password,
        }


class MeetingProvider(Protocol):
    async def create_meeting(
        self,
        title: str,
        start_time: datetime | None,
        end_time: datetime | None = None,
    ) -> MeetingCredentials: ...

    async def delete_meeting(self, meeting_id: str) -> bool: ...


class _TransientMeetingError(Exception):
    """Network failure or gateway status worth one more attempt."""


def _json_body(response: httpx.Response, what: str) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        logger.warning("Zoom %s returned a non-JSON body: status=%s", what, response.status_code)
        raise ProvisioningError(f"Meeting provider returned an unreadable {what}") from exc
    if not isinstance(data, dict):
        raise ProvisioningError(f"Meeting provider returned an unreadable {what}")
    return data


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ZoomMeetingProvider:
    """
    Zoom REST client using server-to-server OAuth (account credentials grant).

    Every request carries an explicit timeout. Meeting creation is retried at most
    ``retries`` times on transport errors or gateway statuses; deletion is best-effort
    and reports failure through its return value instead of raising.
    """

    def __init__(
        self,
        *,
        account_id: str | None,
        client_id: str | None,
        client_secret: str | None,
        api_url: str = "https://api.zoom.us/v2",
        oauth_url: str = "https://zoom.us/oauth/token",
        timezone_name: str = "Asia/Kolkata",
        default_duration_minutes: int = 60,
        timeout: float = 10.0,
        retries: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._account_id = account_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._api_url = api_url.rstrip("/")
        self._oauth_url = oauth_url
        self._timezone_name = timezone_name
        self._default_duration = default_duration_minutes
        self._timeout = timeout
        self._retries = max(0, retries)
        self._transport = transport
        self._token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ZoomMeetingProvider":
        return cls(
            account_id=settings.zoom_account_id,
            client_id=settings.zoom_client_id,
            client_secret=settings.zoom_client_secret,
            api_url=settings.zoom_api_url,
            oauth_url=settings.zoom_oauth_url,
            timezone_name=settings.zoom_timezone,
            default_duration_minutes=settings.zoom_default_duration_minutes,
            timeout=settings.meeting_request_timeout_seconds,
            retries=settings.meeting_create_retries,
        )

    def __repr__(self) -> str:
        return f"ZoomMeetingProvider(account_id={self._account_id!r})"

    @property
    def configured(self) -> bool:
        return bool(self._account_id and self._client_id and self._client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        try:
            response = await client.post(
                self._oauth_url,
                params={"grant_type": "account_credentials", "account_id": self._account_id},
                auth=(self._client_id or "", self._client_secret or ""),
            )
        except httpx.TransportError as exc:
            raise _TransientMeetingError(f"token request failed: {exc}") from exc
        if response.status_code in _TRANSIENT_STATUSES:
            raise _TransientMeetingError(f"token request status {response.status_code}")
        if response.status_code >= 400:
            logger.warning("Zoom OAuth token request failed: status=%s", response.status_code)
            raise ProvisioningError("Meeting provider authentication failed")
        data = _json_body(response, "token response")
        token = data.get("access_token")
        if not token:
            raise ProvisioningError("Meeting provider returned no access token")
        try:
            expires_in = int(data.get("expires_in") or 3600)
        except (TypeError, ValueError) as exc:
            raise ProvisioningError("Meeting provider returned an unreadable token response") from exc
        self._token = token
        self._token_expires_at = time.monotonic() + max(
            0, expires_in - _TOKEN_REFRESH_MARGIN_SECONDS
        )
        return token

    def _meeting_payload(
        self, title: str, start_time: datetime | None, end_time: datetime | None
    ) -> dict[str, Any]:
        duration = self._default_duration
        if start_time and end_time and end_time > start_time:
            duration = math.ceil((_utc(end_time) - _utc(start_time)).total_seconds() / 60)
        payload: dict[str, Any] = {
            "topic": (title or "Live class")[:_MAX_TOPIC_LENGTH],
            "type": 2,
            "duration": duration,
            "timezone": self._timezone_name,
            "settings": {
                "host_video": True,
                "participant_video": True,
                "join_before_host": False,
                "mute_upon_entry": True,
                "waiting_room": True,
            },
        }
        if start_time:
            payload["start_time"] = _utc(start_time).strftime("%Y-%m-%dT%H:%M:%SZ")
        return payload

    async def _create_once(
        self, client: httpx.AsyncClient, payload: dict[str, Any]
    ) -> MeetingCredentials:
        token = await self._access_token(client)
        try:
            response = await client.post(
                f"{self._api_url}/users/me/meetings",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TransportError as exc:
            raise _TransientMeetingError(f"create request failed: {exc}") from exc

        if response.status_code in _TRANSIENT_STATUSES:
            raise _TransientMeetingError(f"create request status {response.status_code}")
        if response.status_code == 401:
            self._token = None
        if response.status_code >= 400:
            logger.warning(
                "Zoom meeting creation failed: status=%s body=%s",
                response.status_code,
                response.text,
            )
            raise ProvisioningError(
                f"Meeting creation failed with status {response.status_code}"
            )

        data = _json_body(response, "meeting response")
        if not data.get("id") or not data.get("join_url"):
            raise ProvisioningError("Meeting provider response missing meeting id or link")
        return MeetingCredentials(
            join_link=data["join_url"],
            host_link=data.get("start_url"),
            meeting_id=str(data["id"]),
            password=data.get("password"),
        )

    async def create_meeting(
        self,
        title: str,
        start_time: datetime | None,
        end_time: datetime | None = None,
    ) -> MeetingCredentials:
        if not self.configured:
            raise ProvisioningError("Meeting provider not configured")

        payload = self._meeting_payload(title, start_time, end_time)
        attempts = 1 + self._retries
        async with self._client() as client:
            for attempt in range(1, attempts + 1):
                try:
                    credentials = await self._create_once(client, payload)
                except _TransientMeetingError as exc:
                    if attempt >= attempts:
                        logger.warning(
                            "Zoom meeting creation gave up after %s attempts: %s", attempt, exc
                        )
                        raise ProvisioningError("Meeting provider unavailable") from exc
                    metrics.meeting_provision_retries_total.inc()
                    logger.info("Retrying Zoom meeting creation after: %s", exc)
                    continue
                logger.info(
                    "Created Zoom meeting",
                    extra={"meeting_id": credentials.meeting_id, "attempt": attempt},
                )
                return credentials
        raise ProvisioningError("Meeting provider unavailable")  # pragma: no cover

    async def delete_meeting(self, meeting_id: str) -> bool:
        if not meeting_id:
            return True
        if not self.configured:
            logger.warning("Zoom not configured; cannot delete meeting %s", meeting_id)
            return False
        try:
            async with self._client() as client:
                token = await self._access_token(client)
                response = await client.delete(
                    f"{self._api_url}/meetings/{meeting_id}",
                    headers={"Authorization": f"Bearer {token}"},
                )
        except (httpx.HTTPError, _TransientMeetingError, ProvisioningError) as exc:
            logger.warning("Zoom meeting deletion failed for %s: %s", meeting_id, exc)
            return False

        if response.status_code == 404:
            logger.info("Zoom meeting %s already gone", meeting_id)
            return True
        if response.status_code >= 400:
            logger.warning(
                "Zoom meeting deletion failed: meeting_id=%s status=%s body=%s",
                meeting_id,
                response.status_code,
                response.text,
            )
            return False
        return True


async def teardown_meetings(provider: MeetingProvider, meeting_ids: Iterable[str]) -> int:
    """Delete remote rooms best-effort; returns how many deletions failed."""
    failures = 0
    for meeting_id in meeting_ids:
        if await provider.delete_meeting(meeting_id):
            continue
        failures += 1
        metrics.meeting_teardown_failures_total.inc()
        logger.warning("Meeting %s may have leaked; remote deletion failed", meeting_id)
    return failures


__all__ = [
    "MeetingCredentials",
    "MeetingProvider",
    "ZoomMeetingProvider",
    "teardown_meetings",
]
