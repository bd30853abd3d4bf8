"""Settlement chain access: ERC20 transfers from the settlement wallet."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from offramp.config import settings
from offramp.core.errors import ConfigurationError, PollTimeout
from offramp.core.polling import poll
from offramp.core.security import format_private_key

logger = logging.getLogger(__name__)

ERC20_ABI = [
    {
        "constant": False,
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"}
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "payable": False,
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "payable": False,
        "stateMutability": "view",
        "type": "function"
    }
]


class BroadcastRejected(Exception):
    """The node answered the send with an error: the transaction is not in flight."""


class ConfirmationTimeout(Exception):
    """No receipt, or not enough confirmations, before the deadline."""


@dataclass(frozen=True)
class SignedTransfer:
    tx_hash: str
    raw_transaction: bytes
    nonce: int


@dataclass(frozen=True)
class TransferReceipt:
    tx_hash: str
    status: int
    block_number: Optional[int]


def _hex(value: Any) -> str:
    text = value.hex() if hasattr(value, "hex") else str(value)
    return text if text.startswith("0x") else f"0x{text}"


class EvmSettlementChain:
    """
    The settlement wallet on an EVM chain.

    web3 calls are blocking, so each one runs in a worker thread. Signing is
    split from broadcasting so that the transaction hash is known, and can be
    recorded, before anything is sent.
    """

    def __init__(
        self,
        rpc_url: str = settings.WEB3_RPC_URL,
        private_key: str = settings.SETTLEMENT_PRIVATE_KEY,
        chain_id: int = settings.SETTLEMENT_CHAIN_ID,
        gas_limit: int = settings.SETTLEMENT_GAS_LIMIT,
        confirmation_timeout: float = settings.SETTLEMENT_CONFIRMATION_TIMEOUT,
        min_confirmations: int = settings.MIN_CONFIRMATIONS,
        web3: Optional[Web3] = None
    ):
        self.web3 = web3 or Web3(Web3.HTTPProvider(rpc_url))
        self.chain_id = chain_id
        self.gas_limit = gas_limit
        self.confirmation_timeout = confirmation_timeout
        self.min_confirmations = max(1, min_confirmations)
        self._decimals: Dict[str, int] = {}

        if private_key:
            self.account = self.web3.eth.account.from_key(format_private_key(private_key))
            self.address = self.account.address
        else:
            self.account = None
            self.address = None
            logger.warning("Settlement wallet not configured - settlement transfers will not execute")

    def _contract(self, token_address: str):
        return self.web3.eth.contract(
            address=self.web3.to_checksum_address(token_address),
            abi=ERC20_ABI
        )

    async def token_decimals(self, token_address: str) -> int:
        """Declared decimal precision of an ERC20 token (cached per token)."""
        key = token_address.lower()
        if key not in self._decimals:
            contract = self._contract(token_address)
            self._decimals[key] = int(await asyncio.to_thread(contract.functions.decimals().call))
            logger.info(f"Token {token_address} has {self._decimals[key]} decimals")
        return self._decimals[key]

    async def sign_transfer(self, token_address: str, to_address: str, amount_base_units: int) -> SignedTransfer:
        """
        Build and sign ``transfer(to, amount)`` without sending it.

        The nonce is the account's pending transaction count, so callers must
        serialize signing and broadcasting per account.
        """
        if self.account is None:
            raise ConfigurationError("Settlement wallet not configured")

        return await asyncio.to_thread(self._sign_transfer, token_address, to_address, amount_base_units)

    def _sign_transfer(self, token_address: str, to_address: str, amount_base_units: int) -> SignedTransfer:
        contract = self._contract(token_address)
        recipient = self.web3.to_checksum_address(to_address)
        nonce = self.web3.eth.get_transaction_count(self.address, "pending")

        transfer_tx = contract.functions.transfer(
            recipient,
            amount_base_units
        ).build_transaction({
            'from': self.address,
            'nonce': nonce,
            'gas': self.gas_limit,
            'gasPrice': self.web3.eth.gas_price,
            'chainId': self.chain_id
        })

        signed = self.account.sign_transaction(transfer_tx)
        return SignedTransfer(
            tx_hash=_hex(signed.hash),
            raw_transaction=bytes(signed.raw_transaction),
            nonce=nonce,
        )

    async def broadcast(self, signed: SignedTransfer) -> str:
        """
        Send a signed transaction.

        Raises:
            BroadcastRejected: The node returned an error for the transaction
            Exception: Anything else (connection reset, timeout) leaves the
                transaction possibly in flight and propagates unchanged
        """
        try:
            tx_hash = await asyncio.to_thread(self.web3.eth.send_raw_transaction, signed.raw_transaction)
        except (ValueError, Web3Exception) as e:
            if isinstance(e, TimeExhausted):
                raise
            raise BroadcastRejected(str(e)) from e

        logger.info(f"Settlement transaction broadcast: {_hex(tx_hash)} (nonce {signed.nonce})")
        return _hex(tx_hash)

    async def wait_for_confirmation(self, tx_hash: str) -> TransferReceipt:
        """
        Wait for the receipt, then for ``min_confirmations`` blocks.

        Raises:
            ConfirmationTimeout: Deadline passed without enough confirmations
        """
        try:
            receipt = await asyncio.to_thread(
                self.web3.eth.wait_for_transaction_receipt,
                tx_hash,
                timeout=self.confirmation_timeout
            )
        except TimeExhausted as e:
            raise ConfirmationTimeout(f"No receipt for {tx_hash} after {self.confirmation_timeout}s") from e

        block_number = receipt.get('blockNumber')
        if receipt['status'] == 1 and self.min_confirmations > 1 and block_number is not None:
            target = block_number + self.min_confirmations - 1
            try:
                await poll(
                    lambda: asyncio.to_thread(lambda: self.web3.eth.block_number),
                    lambda current: current >= target,
                    interval=2.0,
                    timeout=self.confirmation_timeout,
                    key=f"confirmations:{tx_hash}",
                )
            except PollTimeout as e:
                raise ConfirmationTimeout(
                    f"{tx_hash} mined in block {block_number} but not {self.min_confirmations} confirmations deep"
                ) from e

        return TransferReceipt(tx_hash=tx_hash, status=int(receipt['status']), block_number=block_number)
