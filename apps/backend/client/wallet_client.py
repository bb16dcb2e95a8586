import logging
from typing import Optional

import httpx

import config
from exceptions import ExternalServiceError
from services.wallet import WalletBalance

logger = logging.getLogger(__name__)


class WalletClient:
    """Reads the authoritative wallet balance from the backend."""

    def __init__(self, base_url: str = config.REWARDS_API_BASE_URL, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client

    async def get_wallet_balance(self, user_id: str) -> WalletBalance:
        url = f"{self.base_url}/api/ads/balance/{user_id}"
        try:
            if self._client is not None:
                response = await self._client.get(url)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"[WalletClient] Balance fetch failed for user {user_id}: {e}")
            raise ExternalServiceError("Could not fetch wallet balance", service_name="rewards_api") from e

        return WalletBalance.model_validate(response.json())
