"""At-most-once settlement transfers from the settlement wallet."""

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from offramp.core.errors import ConfigurationError, DoubleSpendGuard, OffRampError, SettlementFailure
from offramp.models.settlement_transfer import SettlementTransfer
from offramp.services.chain_service import BroadcastRejected, ConfirmationTimeout, EvmSettlementChain
from offramp.services.store import SagaStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementResult:
    tx_hash: str
    amount_base_units: int
    block_number: Optional[int]


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human-readable token amount to base units, rounding down."""
    if amount <= 0:
        raise ValueError(f"Settlement amount must be positive, got {amount}")
    return int((amount * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


class SettlementExecutor:
    """
    Sends each settlement transfer at most once per idempotency key.

    The key is reserved in the store before signing, and the signed hash is
    recorded before broadcasting, so a crash at any point leaves a record that
    blocks a second transfer. Submissions from the wallet are serialized to
    keep nonces in order.

    Never retried automatically: a failure whose ``broadcast_uncertain`` flag
    is set may still settle on chain.
    """

    def __init__(self, chain: EvmSettlementChain, store: SagaStore):
        self.chain = chain
        self.store = store
        self._submit_lock = asyncio.Lock()

    async def get_transfer(self, idempotency_key: str) -> Optional[SettlementTransfer]:
        return await self.store.get_transfer(idempotency_key)

    async def quote_base_units(self, token_address: str, amount: Decimal) -> int:
        """Amount in the token's base unit, using its declared decimals."""
        decimals = await self.chain.token_decimals(token_address)
        return to_base_units(amount, decimals)

    async def execute(
        self,
        idempotency_key: str,
        token_address: str,
        to_address: str,
        amount_base_units: int
    ) -> SettlementResult:
        """
        Transfer ``amount_base_units`` of ``token_address`` to ``to_address``.

        Raises:
            DoubleSpendGuard: A transfer for the key was already reserved or sent
            SettlementFailure: The transfer did not confirm
        """
        if self.chain.account is None:
            raise ConfigurationError("Settlement wallet not configured")

        async with self._submit_lock:
            await self.store.reserve_transfer(idempotency_key, to_address, token_address, amount_base_units)
            logger.info(
                f"Settlement {idempotency_key}: sending {amount_base_units} base units "
                f"of {token_address} to {to_address}"
            )

            try:
                signed = await self.chain.sign_transfer(token_address, to_address, amount_base_units)
            except Exception as e:
                await self._fail(idempotency_key, False, f"Signing failed: {e}")
                if isinstance(e, OffRampError):
                    raise
                raise SettlementFailure(f"Could not sign settlement transfer: {e}", broadcast_uncertain=False) from e

            await self.store.mark_transfer_submitted(idempotency_key, signed.tx_hash)

            try:
                await self.chain.broadcast(signed)
            except BroadcastRejected as e:
                await self._fail(idempotency_key, False, f"Rejected by node: {e}")
                raise SettlementFailure(
                    f"Settlement transfer rejected: {e}",
                    broadcast_uncertain=False,
                    tx_hash=signed.tx_hash,
                ) from e
            except Exception as e:
                await self._fail(idempotency_key, True, f"Broadcast outcome unknown: {e}")
                raise SettlementFailure(
                    f"Settlement broadcast outcome unknown: {e}",
                    broadcast_uncertain=True,
                    tx_hash=signed.tx_hash,
                ) from e

        return await self._confirm(idempotency_key, signed.tx_hash, amount_base_units)

    async def confirm_recorded(self, transfer: SettlementTransfer) -> SettlementResult:
        """
        Finish a transfer whose hash was recorded by an earlier, interrupted run.

        Only waits for the recorded hash; nothing is signed or sent again.
        """
        if not transfer.tx_hash:
            raise DoubleSpendGuard(transfer.idempotency_key, None, transfer.state)
        logger.info(f"Settlement {transfer.idempotency_key}: waiting on recorded tx {transfer.tx_hash}")
        return await self._confirm(transfer.idempotency_key, transfer.tx_hash, int(transfer.amount_base_units))

    async def _confirm(self, idempotency_key: str, tx_hash: str, amount_base_units: int) -> SettlementResult:
        try:
            receipt = await self.chain.wait_for_confirmation(tx_hash)
        except ConfirmationTimeout as e:
            await self._fail(idempotency_key, True, str(e))
            raise SettlementFailure(
                f"Settlement transfer not confirmed in time: {e}",
                broadcast_uncertain=True,
                tx_hash=tx_hash,
            ) from e
        except Exception as e:
            # The transaction was already handed to the node
            await self._fail(idempotency_key, True, f"Confirmation check failed: {e}")
            raise SettlementFailure(
                f"Could not confirm settlement transfer: {e}",
                broadcast_uncertain=True,
                tx_hash=tx_hash,
            ) from e

        if receipt.status != 1:
            await self._fail(idempotency_key, False, "Transaction reverted")
            raise SettlementFailure(
                f"Settlement transfer reverted on-chain: {tx_hash}",
                broadcast_uncertain=False,
                tx_hash=tx_hash,
            )

        await self.store.mark_transfer_confirmed(idempotency_key)
        logger.info(f"Settlement {idempotency_key} confirmed in block {receipt.block_number}: {tx_hash}")
        return SettlementResult(
            tx_hash=tx_hash,
            amount_base_units=amount_base_units,
            block_number=receipt.block_number,
        )

    async def _fail(self, idempotency_key: str, broadcast_uncertain: bool, error: str) -> None:
        level = logging.CRITICAL if broadcast_uncertain else logging.ERROR
        logger.log(level, f"Settlement {idempotency_key} failed (uncertain={broadcast_uncertain}): {error}")
        await self.store.mark_transfer_failed(idempotency_key, broadcast_uncertain, error)
