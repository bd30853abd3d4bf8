"""Sponsored (gasless) execution of source-chain calls through the AVNU paymaster."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from offramp.config import settings
from offramp.core.errors import ConfigurationError, SponsorshipIneligible
from offramp.schemas.layerswap import ChainCall
from offramp.services.provider_http import ProviderHttpClient, boundary_error

logger = logging.getLogger(__name__)

PROVIDER = "avnu"

# Signs paymaster typed data on behalf of the source account; returns the signature felts
TypedDataSigner = Callable[[str, Dict[str, Any]], Awaitable[List[str]]]


class GasTokenPrice(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    token_address: str
    price_in_eth: Optional[Decimal] = Field(None, alias="priceInETH")
    price_in_usd: Optional[Decimal] = Field(None, alias="priceInUSD")
    decimals: int = 18


@dataclass(frozen=True)
class SignedExecution:
    """Paymaster typed data signed for the source account, not yet submitted."""

    user_address: str
    typed_data: Dict[str, Any]
    signature: List[str]


class GaslessService:
    """
    Execute a user's deposit calls with gas paid in a stablecoin.

    ``prepare_execution`` builds paymaster typed data and has ``signer`` sign
    it for the source account; ``submit`` sends it. Accounts the paymaster reports as
    incompatible are rejected with ``SponsorshipIneligible``; there is no
    fallback to a self-paid transaction.
    """

    def __init__(
        self,
        api_url: str = settings.AVNU_API_URL,
        api_key: str = settings.AVNU_API_KEY,
        gas_token_address: str = settings.GASLESS_GAS_TOKEN_ADDRESS,
        max_gas_token_amount: int = settings.GASLESS_MAX_GAS_TOKEN_AMOUNT,
        signer: Optional[TypedDataSigner] = None,
        timeout: float = settings.PROVIDER_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.gas_token_address = gas_token_address
        self.max_gas_token_amount = max_gas_token_amount
        self.signer = signer
        headers = {"api-key": api_key} if api_key else {}
        self.http = ProviderHttpClient(
            PROVIDER,
            api_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def check_compatibility(self, account_address: str) -> bool:
        """Whether the account can execute through the paymaster."""
        payload = await self.http.get(f"/paymaster/v1/accounts/{account_address}/compatible")
        if not isinstance(payload, dict) or "isCompatible" not in payload:
            raise boundary_error(PROVIDER, "compatibility response", ValueError(repr(payload)))
        return bool(payload["isCompatible"])

    async def get_gas_token_prices(self) -> List[GasTokenPrice]:
        payload = await self.http.get("/paymaster/v1/gas-token-prices")
        try:
            return [GasTokenPrice.model_validate(item) for item in payload]
        except (ValueError, TypeError) as e:
            raise boundary_error(PROVIDER, "gas token price list", e)

    async def prepare_execution(self, account_address: str, calls: List[ChainCall]) -> SignedExecution:
        """
        Check eligibility, build and sign the sponsored transaction.

        Nothing reaches the source chain here, so any failure is safe to retry.

        Args:
            account_address: Source chain account
            calls: Deposit calls from the bridge swap

        Returns:
            SignedExecution ready for ``submit``

        Raises:
            SponsorshipIneligible: Account cannot use the paymaster
            ConfigurationError: No signer is configured
            ProviderError: Paymaster call failed
        """
        if not calls:
            raise ValueError("No calls to execute")

        if not await self.check_compatibility(account_address):
            logger.warning(f"Account {account_address} is not eligible for gas sponsorship")
            raise SponsorshipIneligible(
                "Account not compatible with gasless transactions",
                context={"userAddress": account_address},
            )

        if self.signer is None:
            raise ConfigurationError("No source-chain signer configured for sponsored execution")

        gas_token = self.gas_token_address
        if not any(p.token_address.lower() == gas_token.lower() for p in await self.get_gas_token_prices()):
            logger.warning(f"Gas token {gas_token} not listed by the paymaster, submitting anyway")

        typed_data = await self.http.post(
            "/paymaster/v1/build-typed-data",
            json_body={
                "userAddress": account_address,
                "calls": [call.as_payload() for call in calls],
                "gasTokenAddress": gas_token,
                "maxGasTokenAmount": hex(self.max_gas_token_amount),
            },
        )
        signature = await self.signer(account_address, typed_data)
        return SignedExecution(user_address=account_address, typed_data=typed_data, signature=signature)

    async def submit(self, execution: SignedExecution) -> str:
        """
        Submit a signed sponsored transaction.

        Once this is called the transfer may be on chain, whatever the outcome.

        Returns:
            Source chain transaction hash
        """
        result = await self.http.post(
            "/paymaster/v1/execute",
            json_body={
                "userAddress": execution.user_address,
                "typedData": execution.typed_data,
                "signature": execution.signature,
            },
        )
        tx_hash = result.get("transactionHash") if isinstance(result, dict) else None
        if not tx_hash:
            raise boundary_error(PROVIDER, "execute response", ValueError(repr(result)))

        logger.info(f"Sponsored execution submitted for {execution.user_address}: {tx_hash}")
        return tx_hash

    async def aclose(self) -> None:
        await self.http.aclose()
