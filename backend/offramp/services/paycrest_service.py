"""Payout client for the Paycrest sender API."""

import logging
from decimal import Decimal
from typing import List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from offramp.config import settings
from offramp.schemas.paycrest import (
    CreateOrderRequest,
    Institution,
    PayoutOrder,
    PayoutOrderState,
    PayoutRate,
    PayoutRecipient,
    VerifiedAccount,
)
from offramp.services.provider_http import ProviderHttpClient, boundary_error, unwrap_data

logger = logging.getLogger(__name__)

PROVIDER = "paycrest"


class PaycrestService:
    """Typed access to rates, institutions, account checks and sender orders."""

    def __init__(
        self,
        api_url: str = settings.PAYCREST_API_URL,
        api_key: str = settings.PAYCREST_API_KEY,
        network: str = settings.PAYCREST_NETWORK,
        timeout: float = settings.PROVIDER_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.network = network
        self.http = ProviderHttpClient(
            PROVIDER,
            api_url,
            headers={"API-Key": api_key},
            timeout=timeout,
            transport=transport,
        )

    async def get_rate(self, token: str, amount: Decimal, currency: str) -> PayoutRate:
        """
        Get the fiat-per-token rate for converting ``amount`` of ``token``.

        Args:
            token: Token symbol (USDC, USDT, ...)
            amount: Token amount in human-readable units
            currency: Fiat currency code

        Returns:
            PayoutRate with the rate and any declared fees
        """
        payload = await self.http.get(
            f"/rates/{token}/{amount}/{currency}",
            params={"network": self.network},
        )
        try:
            rate = PayoutRate.from_data(unwrap_data(payload))
        except (PydanticValidationError, KeyError, TypeError, AttributeError, ArithmeticError) as e:
            raise boundary_error(PROVIDER, "rate", e)
        logger.info(f"Payout rate {token}->{currency} for {amount}: {rate.rate}")
        return rate

    async def get_institutions(self, currency: str) -> List[Institution]:
        """List institutions that can receive payouts in ``currency``."""
        payload = await self.http.get(f"/institutions/{currency}")
        try:
            return [Institution.model_validate(item) for item in unwrap_data(payload) or []]
        except (PydanticValidationError, TypeError) as e:
            raise boundary_error(PROVIDER, "institution list", e)

    async def verify_account(self, institution: str, account_identifier: str) -> VerifiedAccount:
        """
        Resolve the holder name of a bank account.

        Returns:
            VerifiedAccount with the name reported by the institution
        """
        payload = await self.http.post(
            "/verify-account",
            json_body={"institution": institution, "accountIdentifier": account_identifier},
        )
        data = unwrap_data(payload)
        account_name = data.get("accountName") if isinstance(data, dict) else data
        if not isinstance(account_name, str) or not account_name.strip():
            raise boundary_error(PROVIDER, "account verification", ValueError(repr(data)))
        return VerifiedAccount(
            institution=institution,
            account_identifier=account_identifier,
            account_name=account_name.strip(),
        )

    async def create_order(
        self,
        amount: Decimal,
        token: str,
        rate: Decimal,
        recipient: PayoutRecipient,
        return_address: str,
        reference: str
    ) -> PayoutOrder:
        """
        Create a sender order.

        ``reference`` is the per-request idempotency token; the provider ties
        repeated submissions with the same reference to one order.

        Returns:
            PayoutOrder with the deposit address and declared fees
        """
        body = CreateOrderRequest(
            amount=amount,
            token=token,
            rate=rate,
            network=self.network,
            recipient=recipient,
            return_address=return_address,
            reference=reference,
        )
        logger.info(
            f"Creating payout order: {amount} {token} at {rate} {recipient.currency} "
            f"(reference={reference})"
        )
        payload = await self.http.post("/sender/orders", json_body=body.as_payload())
        try:
            order = PayoutOrder.model_validate(unwrap_data(payload))
        except (PydanticValidationError, TypeError) as e:
            raise boundary_error(PROVIDER, "order", e)
        logger.info(f"Payout order {order.id} created, deposit to {order.receive_address}")
        return order

    async def get_order(self, order_id: str) -> PayoutOrderState:
        """Read the current status of a sender order."""
        payload = await self.http.get(f"/sender/orders/{order_id}")
        try:
            return PayoutOrderState.model_validate(unwrap_data(payload))
        except (PydanticValidationError, TypeError) as e:
            raise boundary_error(PROVIDER, "order status", e)

    async def aclose(self) -> None:
        await self.http.aclose()
