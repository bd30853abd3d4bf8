"""Provider status enums and their forward-only transition graphs."""

from enum import Enum
from typing import Dict, FrozenSet, Generic, Mapping, Optional, Type, TypeVar


class SwapStatus(str, Enum):
    """Bridge swap lifecycle."""
    USER_TRANSFER_PENDING = "user_transfer_pending"  # Waiting for the user's deposit
    LS_TRANSFER_PENDING = "ls_transfer_pending"  # Deposit received, bridge is paying out
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PayoutOrderStatus(str, Enum):
    """Payout order lifecycle."""
    PENDING = "pending"
    VALIDATED = "validated"  # Fiat sent to the bank
    SETTLED = "settled"  # Order settled on-chain
    REFUNDED = "refunded"
    EXPIRED = "expired"


S = TypeVar("S", bound=Enum)


class StatusGraph(Generic[S]):
    """
    Directed acyclic graph of legal status moves.

    ``advance`` is the only merge rule used for provider statuses: it moves to
    the reported status when the edge exists and otherwise keeps the current
    one, so duplicate and out-of-order reports never move a status backward.
    """

    def __init__(self, enum: Type[S], edges: Mapping[S, FrozenSet[S]], terminal: FrozenSet[S]):
        self.enum = enum
        self.edges: Dict[S, FrozenSet[S]] = dict(edges)
        self.terminal = terminal

    def parse(self, value: str) -> Optional[S]:
        try:
            return self.enum(value)
        except ValueError:
            return None

    def can_transition(self, current: Optional[S], new: S) -> bool:
        if current is None:
            return True
        return new in self._reachable(current)

    def advance(self, current: Optional[S], reported: S) -> S:
        if self.can_transition(current, reported):
            return reported
        return current  # type: ignore[return-value]

    def is_terminal(self, status: Optional[S]) -> bool:
        return status in self.terminal

    def _reachable(self, start: S) -> FrozenSet[S]:
        seen = set()
        stack = list(self.edges.get(start, frozenset()))
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(self.edges.get(node, frozenset()))
        return frozenset(seen)


SWAP_GRAPH: StatusGraph[SwapStatus] = StatusGraph(
    SwapStatus,
    {
        SwapStatus.USER_TRANSFER_PENDING: frozenset({
            SwapStatus.LS_TRANSFER_PENDING,
            SwapStatus.CANCELLED,
            SwapStatus.EXPIRED,
            SwapStatus.FAILED,
        }),
        SwapStatus.LS_TRANSFER_PENDING: frozenset({
            SwapStatus.COMPLETED,
            SwapStatus.FAILED,
            SwapStatus.CANCELLED,
            SwapStatus.EXPIRED,
        }),
    },
    terminal=frozenset({
        SwapStatus.COMPLETED,
        SwapStatus.FAILED,
        SwapStatus.CANCELLED,
        SwapStatus.EXPIRED,
    }),
)

PAYOUT_GRAPH: StatusGraph[PayoutOrderStatus] = StatusGraph(
    PayoutOrderStatus,
    {
        PayoutOrderStatus.PENDING: frozenset({
            PayoutOrderStatus.VALIDATED,
            PayoutOrderStatus.REFUNDED,
            PayoutOrderStatus.EXPIRED,
        }),
        PayoutOrderStatus.VALIDATED: frozenset({
            PayoutOrderStatus.SETTLED,
        }),
    },
    terminal=frozenset({
        PayoutOrderStatus.VALIDATED,
        PayoutOrderStatus.SETTLED,
        PayoutOrderStatus.REFUNDED,
        PayoutOrderStatus.EXPIRED,
    }),
)
