"""HTTP client for the memory enrichment service."""

from typing import Any

import httpx

from seneca.config.logging import get_logger
from seneca.config.settings import Settings
from seneca.v1.core.exceptions import ProcessingError

logger = get_logger(__name__)


class HttpMemoryProcessor:
    """
    Triggers AI enrichment of one memory over HTTP.

    The enrichment endpoint must be safe to call more than once per memory:
    jobs are delivered at least once.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ):
        headers: dict[str, str] = {}
        if settings.enrichment_api_key:
            headers["X-Internal-API-Key"] = settings.enrichment_api_key
        self.client = client or httpx.AsyncClient(
            base_url=settings.enrichment_base_url.rstrip("/"),
            timeout=settings.enrichment_timeout_s,
            headers=headers,
        )

    async def process(self, memory_id: str) -> None:
        try:
            response = await self.client.post(f"/v1/memories/{memory_id}/process")
        except httpx.RequestError as e:
            raise ProcessingError(f"Enrichment request failed: {e}") from e

        if response.status_code >= 400:
            raise ProcessingError(
                f"Enrichment failed with status {response.status_code}",
                details={"memory_id": memory_id, "body": _error_body(response)},
            )
        logger.debug("Memory enriched", memory_id=memory_id)

    async def close(self) -> None:
        await self.client.aclose()


def _error_body(response: httpx.Response) -> Any:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(data, dict) and "error" in data:
        return data["error"]
    return data
