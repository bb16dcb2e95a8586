import asyncio
import logging
from typing import Optional

import httpx

import config
from exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class HttpCallbackSink:
    """
    Delivers signed completion callbacks to the backend's verify endpoint.

    Used by the simulated provider to stand in for the ad network's own
    server-to-server delivery, including its retry behaviour on 429/5xx.
    """

    def __init__(
        self,
        base_url: str = config.REWARDS_API_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url)
        async with httpx.AsyncClient(timeout=10.0) as client:
            return await client.get(url)

    async def deliver(self, query: str) -> int:
        """
        GET /api/ads/verify?<query>, retrying transient failures.

        Returns the final status code. Raises ExternalServiceError once
        retries are exhausted.
        """
        url = f"{self.base_url}/api/ads/verify?{query}"

        for attempt in range(self.max_retries):
            try:
                response = await self._get(url)

                if response.status_code == 200:
                    logger.info(f"[CallbackSink] Callback accepted: {response.json().get('result')}")
                    return response.status_code

                # Transient on the backend side, the network would retry
                if response.status_code in [429, 500, 502, 503, 504]:
                    retry_after = float(response.headers.get("Retry-After", self.backoff_seconds * (2 ** attempt)))
                    logger.warning(f"[CallbackSink] Callback failed with {response.status_code}. Retrying in {retry_after}s... (Attempt {attempt + 1}/{self.max_retries})")
                    await asyncio.sleep(retry_after)
                    continue

                # Rejected (bad signature or payload); retrying would not help
                logger.error(f"[CallbackSink] Callback rejected: {response.status_code} - {response.text}")
                return response.status_code

            except httpx.RequestError as e:
                wait_time = self.backoff_seconds * (2 ** attempt)
                logger.warning(f"[CallbackSink] Network error: {e}. Retrying in {wait_time}s... (Attempt {attempt + 1}/{self.max_retries})")
                await asyncio.sleep(wait_time)

        logger.error(f"[CallbackSink] Failed to deliver callback after {self.max_retries} attempts.")
        raise ExternalServiceError("Callback delivery failed", service_name="rewards_api")
