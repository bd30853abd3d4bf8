"""Off-ramp error taxonomy.

Every failure the saga can surface is an ``OffRampError``. Each carries the
HTTP status the API answers with, a machine readable code, the saga step that
failed and whether the source-chain transfer had already been submitted when
it failed. Callers must not replay step 3 when ``source_transfer_submitted`` is
set, since the bridge deposit cannot be reversed.
"""

from typing import Any, Dict, Optional


PROVIDER_MESSAGES = {
    400: "Invalid request. Please check your input.",
    401: "Authentication failed. Please check your API key.",
    429: "Rate limit exceeded. Please try again later.",
}
SERVER_ERROR_MESSAGE = "Server error. Please try again later."
NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."


class OffRampError(Exception):
    """Base class for failures surfaced by the off-ramp saga."""

    http_status: int = 500
    code: str = "OFFRAMP_ERROR"

    def __init__(
        self,
        message: str,
        *,
        step: Optional[str] = None,
        source_transfer_submitted: bool = False,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.step = step
        self.source_transfer_submitted = source_transfer_submitted
        self.context: Dict[str, Any] = dict(context or {})
        super().__init__(message)

    def at_step(self, step: str, source_transfer_submitted: bool, **context: Any) -> "OffRampError":
        """Attach saga position to an error raised by a collaborator."""
        if self.step is None:
            self.step = step
        self.source_transfer_submitted = self.source_transfer_submitted or source_transfer_submitted
        for key, value in context.items():
            if value is not None:
                self.context.setdefault(key, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": self.message,
            "code": self.code,
            "step": self.step,
            "sourceTransferSubmitted": self.source_transfer_submitted,
        }
        body.update(self.context)
        return body


class ConfigurationError(OffRampError):
    """A required secret or address is missing from the settings."""

    code = "CONFIGURATION_ERROR"


class ValidationError(OffRampError):
    """Bad input. Never retried."""

    http_status = 400
    code = "VALIDATION_ERROR"


class InvalidSwapState(ValidationError):
    """The bridge swap is not awaiting the user's transfer."""

    code = "INVALID_SWAP_STATE"


class ProviderError(OffRampError):
    """A bridge, payout or paymaster call failed.

    ``status_code`` is the provider's HTTP status, or ``None`` when the request
    never produced a response (connection reset, timeout).
    """

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        provider: str,
        status_code: Optional[int],
        message: Optional[str] = None,
        *,
        detail: Optional[str] = None,
        **kwargs: Any
    ):
        self.provider = provider
        self.status_code = status_code
        self.detail = detail
        super().__init__(message or self.user_message(status_code), **kwargs)
        self.context.setdefault("provider", provider)
        if status_code is not None:
            self.context.setdefault("providerStatus", status_code)

    @staticmethod
    def user_message(status_code: Optional[int]) -> str:
        if status_code is None:
            return NETWORK_ERROR_MESSAGE
        if status_code >= 500:
            return SERVER_ERROR_MESSAGE
        return PROVIDER_MESSAGES.get(status_code, "An unexpected error occurred.")

    @property
    def transient(self) -> bool:
        """429, 5xx and transport failures may succeed when repeated."""
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500

    @property
    def http_status(self) -> int:  # type: ignore[override]
        if self.status_code in (400, 401):
            return self.status_code
        if self.status_code == 429:
            return 429
        return 502


class SponsorshipIneligible(OffRampError):
    """The user's account cannot use the gas sponsorship paymaster."""

    http_status = 400
    code = "SPONSORSHIP_INELIGIBLE"


class BridgeFailure(OffRampError):
    """The bridge swap reached failed, cancelled or expired."""

    code = "BRIDGE_FAILURE"

    def __init__(self, swap_id: str, status: str, **kwargs: Any):
        self.swap_id = swap_id
        self.status = status
        super().__init__(f"Bridge swap {swap_id} ended with status '{status}'", **kwargs)
        self.context.setdefault("bridgeStatus", status)


class PollTimeout(OffRampError):
    """The deadline passed before a terminal status was observed.

    The outcome is ambiguous: the entity may still reach a terminal state, so
    this is reported as pending rather than failed.
    """

    http_status = 202
    code = "PENDING"

    def __init__(self, key: str, timeout: float, last_result: Any = None, attempts: int = 0, **kwargs: Any):
        self.key = key
        self.timeout = timeout
        self.last_result = last_result
        self.attempts = attempts
        super().__init__(f"No terminal status for {key} after {timeout:g}s", **kwargs)


class SignatureInvalid(OffRampError):
    """Webhook signature missing or not matching the shared secret."""

    http_status = 401
    code = "SIGNATURE_INVALID"


class SettlementFailure(OffRampError):
    """The settlement transfer did not confirm.

    ``broadcast_uncertain`` is set when the transaction may have reached the
    network (send timed out, receipt wait timed out). Such a transfer must be
    reconciled by hand and never retried blindly.
    """

    code = "SETTLEMENT_FAILURE"

    def __init__(
        self,
        message: str,
        *,
        broadcast_uncertain: bool,
        tx_hash: Optional[str] = None,
        **kwargs: Any
    ):
        self.broadcast_uncertain = broadcast_uncertain
        self.tx_hash = tx_hash
        super().__init__(message, **kwargs)
        self.context.setdefault("broadcastUncertain", broadcast_uncertain)
        if tx_hash:
            self.context.setdefault("txHash", tx_hash)


class DoubleSpendGuard(OffRampError):
    """A transfer already exists for this idempotency key."""

    http_status = 409
    code = "DOUBLE_SPEND_GUARD"

    def __init__(self, idempotency_key: str, tx_hash: Optional[str], state: str, **kwargs: Any):
        self.idempotency_key = idempotency_key
        self.tx_hash = tx_hash
        self.state = state
        super().__init__(
            f"Settlement transfer for {idempotency_key} already {state}",
            **kwargs
        )
        self.context.setdefault("idempotencyKey", idempotency_key)
        if tx_hash:
            self.context.setdefault("txHash", tx_hash)


class SagaInProgress(OffRampError):
    """Another saga instance currently owns this request."""

    http_status = 409
    code = "SAGA_IN_PROGRESS"
