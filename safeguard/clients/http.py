"""
HTTP clients for the critical-path collaborators: account service,
authority reporting gateway and safety alert channel.
"""
from typing import Any, Dict, Optional

import httpx

from safeguard.clients.base import AccountService, AuthorityReportingGateway, SafetyAlertChannel
from safeguard.core.config import settings
from safeguard.core.logging import get_logger
from safeguard.moderation.errors import CriticalPathFailure, RetriableReportError
from safeguard.moderation.records import AuthorityReport

logger = get_logger("clients.http")


class ServiceClient:
    """Lazily created httpx.AsyncClient with bearer auth, shared by the collaborators."""

    def __init__(
        self,
        base_url: str,
        token: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.token = token if token is not None else settings.service_token
        self.timeout = timeout or settings.http_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json", "Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class HttpAccountService(ServiceClient, AccountService):

    async def suspend(self, user_id: str, reason: str) -> None:
        client = await self._get_client()
        response = await client.post(
            f"/v1/accounts/{user_id}/suspend",
            json={"reason": reason},
        )
        if response.status_code == 409:
            logger.info(f"Account {user_id} already suspended")
            return
        response.raise_for_status()
        logger.info(f"Account suspended: {user_id}, reason: {reason}")


class HttpAuthorityReportingGateway(ServiceClient, AuthorityReportingGateway):
    """
    Authority reporting gateway client.

    Transport errors, 429 and 5xx responses are retriable. Other 4xx
    responses mean the gateway refused the payload; they are raised as
    CriticalPathFailure and go straight to the outbox.
    """

    async def report(self, report: AuthorityReport) -> None:
        client = await self._get_client()
        try:
            response = await client.post("/v1/reports", json=report.model_dump(mode="json"))
        except httpx.TransportError as e:
            raise RetriableReportError(f"{type(e).__name__}: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise RetriableReportError(f"HTTP {response.status_code}: {response.text[:200]}")
        if response.status_code >= 400:
            raise CriticalPathFailure(
                "report", f"HTTP {response.status_code}: {response.text[:200]}"
            )
        logger.info(f"Authority report accepted for review {report.review_id}")


class HttpSafetyAlertChannel(ServiceClient, SafetyAlertChannel):

    async def alert(self, priority: str, payload: Dict[str, Any]) -> None:
        client = await self._get_client()
        response = await client.post(
            "/v1/alerts",
            json={"priority": priority, "payload": payload},
        )
        response.raise_for_status()
        logger.info(f"Safety team alerted ({priority}): {payload.get('type')}")
