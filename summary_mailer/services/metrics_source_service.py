"""
Metrics data source client.

Loads an owner's metric entities, remediation cases and dashboard settings
(which carry the email schedule), and optionally merges several owners'
portfolios by tag.
"""

import httpx

from summary_mailer.config import settings
from summary_mailer.infrastructure.observability.logging import get_logger
from summary_mailer.models.domain.performance_domain import OwnerData

logger = get_logger(__name__)


class MetricsSourceError(Exception):
    """Raised when the metrics source is unreachable or answers with an error."""

    def __init__(self, message: str, status_code: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable


class MetricsSourceService:
    """HTTP client for the metrics data source."""

    def __init__(self, base_url: str | None = None, client: httpx.AsyncClient | None = None):
        self.base_url = (base_url or settings.METRICS_SOURCE_URL).rstrip("/")
        self._client = client

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.METRICS_SOURCE_TIMEOUT_SECONDS)

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, **kwargs)
            else:
                async with self._new_client() as client:
                    response = await client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            logger.error("Metrics source request failed", path=path, error=str(e))
            raise MetricsSourceError(f"Metrics source unreachable: {e}") from e

        if response.status_code >= 400:
            raise MetricsSourceError(
                f"Metrics source error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MetricsSourceError("Metrics source returned invalid JSON") from e

        if not isinstance(data, dict):
            raise MetricsSourceError("Metrics source returned an unexpected payload")
        return data

    async def load_owner_data(self, owner_id: str) -> OwnerData:
        """
        Load everything the source holds for one owner.

        Raises:
            MetricsSourceError: On transport errors, non-2xx status or bad JSON
        """
        data = await self._request("GET", "/load", params={"userId": owner_id})
        owner_data = _parse_owner_data(data)
        logger.debug(
            "Owner data loaded",
            owner_id=owner_id,
            entities=len(owner_data.entities),
            cases=len(owner_data.cases),
        )
        return owner_data

    async def consolidate(self, tags: list[str]) -> OwnerData | None:
        """
        Merge the portfolios matching ``tags``.

        Returns None when the source reports no success.
        """
        data = await self._request("POST", "/consolidate", json={"tags": tags})
        if not data.get("success"):
            return None
        return _parse_owner_data(data)


def _parse_owner_data(data: dict) -> OwnerData:
    try:
        return OwnerData.from_payload(data)
    except (TypeError, AttributeError, ValueError) as e:
        logger.error("Metrics source payload rejected", error=str(e), error_type=type(e).__name__)
        raise MetricsSourceError("Metrics source returned a malformed payload") from e


def consolidation_tags(dashboard_settings: dict | None) -> list[str]:
    """Tags to consolidate by, or an empty list when consolidation is off."""
    if not dashboard_settings:
        return []
    consolidate = dashboard_settings.get("emailConsolidate") or {}
    if not isinstance(consolidate, dict) or consolidate.get("enabled") is not True:
        return []
    raw_tags = consolidate.get("tags")
    if not isinstance(raw_tags, str):
        return []
    return [tag.strip() for tag in raw_tags.split(",") if tag.strip()]
