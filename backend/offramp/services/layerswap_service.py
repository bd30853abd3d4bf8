"""Bridge client for the LayerSwap swap API."""

import logging
from decimal import Decimal
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from offramp.config import settings
from offramp.schemas.layerswap import BridgeSwap, parse_swap_envelope
from offramp.services.provider_http import ProviderHttpClient, boundary_error

logger = logging.getLogger(__name__)

PROVIDER = "layerswap"


class LayerSwapService:
    """Typed access to bridge swaps: create and read."""

    def __init__(
        self,
        api_url: str = settings.LAYERSWAP_API_URL,
        api_key: str = settings.LAYERSWAP_API_KEY,
        source_network: str = settings.LAYERSWAP_SOURCE_NETWORK,
        destination_network: str = settings.LAYERSWAP_DESTINATION_NETWORK,
        timeout: float = settings.PROVIDER_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.source_network = source_network
        self.destination_network = destination_network
        self.http = ProviderHttpClient(
            PROVIDER,
            api_url,
            headers={"X-LS-APIKEY": api_key},
            timeout=timeout,
            transport=transport,
        )

    async def create_swap(
        self,
        source_token: str,
        amount: Decimal,
        destination_address: str,
        destination_token: Optional[str] = None,
        refuel: bool = True
    ) -> BridgeSwap:
        """
        Open a swap from the source network to the settlement network.

        Args:
            source_token: Token symbol on the source chain
            amount: Amount in human-readable units
            destination_address: Settlement account that receives the bridged tokens
            destination_token: Token symbol on the settlement chain (defaults to source_token)
            refuel: Ask the bridge to top up destination gas

        Returns:
            The created swap, normally awaiting the user's deposit
        """
        body = {
            "source_network": self.source_network,
            "source_token": source_token,
            "destination_network": self.destination_network,
            "destination_token": destination_token or source_token,
            "amount": float(amount),
            "destination_address": destination_address,
            "refuel": refuel,
        }
        logger.info(
            f"Creating bridge swap: {amount} {source_token} "
            f"{self.source_network} -> {self.destination_network}"
        )
        payload = await self.http.post("/swaps", json_body=body)
        swap = self._parse(payload)
        logger.info(f"Bridge swap {swap.id} created with status {swap.status}")
        return swap

    async def get_swap(self, swap_id: str) -> BridgeSwap:
        """Fetch a swap with its quote and deposit actions."""
        payload = await self.http.get(f"/swaps/{swap_id}")
        return self._parse(payload)

    @staticmethod
    def _parse(payload) -> BridgeSwap:
        try:
            return parse_swap_envelope(payload)
        except (PydanticValidationError, ValueError, TypeError) as e:
            raise boundary_error(PROVIDER, "swap", e)

    async def aclose(self) -> None:
        await self.http.aclose()
