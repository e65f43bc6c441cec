"""
Infrastructure layer: Payout ledger client.

Talks to the payout relayer that submits cUSD transfers through the
on-chain payout manager. Every transfer carries the claim key as its
idempotency key, so resubmitting a claim never moves funds twice, and
the relayer can be asked for the outcome of a claim's transfer.
"""
from typing import Any, Optional
import logging

from pydantic import BaseModel, ValidationError

from app.config import settings
from app.domain.outcomes import (
    Receipt,
    RetryableTransferError,
    TerminalTransferError,
    TransferOutcome,
)
from app.infrastructure.api_constants import APIConstants, LedgerEndpoints
from app.infrastructure.external_api_client import ExternalAPIClient, ExternalAPIError

logger = logging.getLogger(__name__)

# Client errors that are still worth retrying
RETRYABLE_STATUS_CODES = {408, 409, 425, 429}

# Revert / relayer reasons that indicate a transient chain condition
TRANSIENT_REASON_MARKERS = (
    "nonce",
    "underpriced",
    "gas",
    "timeout",
    "timed out",
    "temporarily",
)

CONFIRMED_STATUSES = {"confirmed", "success", "mined"}
IN_FLIGHT_STATUSES = {"pending", "submitted", "queued"}


class PayoutResponse(BaseModel):
    """Payout record returned by the relayer."""
    status: str = "confirmed"
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    error: Optional[str] = None


def _reason_from_payload(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        for key in ("error", "reason", "message", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def is_transient_reason(reason: str) -> bool:
    lowered = reason.lower()
    return any(marker in lowered for marker in TRANSIENT_REASON_MARKERS)


def classify_transfer_error(error: ExternalAPIError) -> TransferOutcome:
    """
    Classify a failed relayer call as retryable or terminal.

    Args:
        error: Error raised by the HTTP layer

    Returns:
        RetryableTransferError or TerminalTransferError
    """
    reason = _reason_from_payload(error.payload) or error.message

    if error.retryable or error.status_code in RETRYABLE_STATUS_CODES:
        return RetryableTransferError(reason=reason)
    if is_transient_reason(reason):
        return RetryableTransferError(reason=reason)
    return TerminalTransferError(reason=reason)


def payout_to_outcome(data: Any) -> TransferOutcome:
    """
    Convert a relayer payout record to a transfer outcome.

    Args:
        data: Parsed JSON body

    Returns:
        Receipt when confirmed, otherwise a retryable or terminal error
    """
    try:
        payout = PayoutResponse(**data)
    except (ValidationError, TypeError) as e:
        # Unknown state: never assume the transfer failed
        return RetryableTransferError(reason=f"Malformed relayer response: {e}")

    status = payout.status.lower()
    if status in CONFIRMED_STATUSES and payout.transaction_hash:
        return Receipt(
            transaction_hash=payout.transaction_hash,
            block_number=payout.block_number,
            gas_used=payout.gas_used,
        )
    if status in IN_FLIGHT_STATUSES:
        return RetryableTransferError(reason=f"Transfer still {status}", in_flight=True)

    reason = payout.error or f"Transfer {status}"
    if is_transient_reason(reason):
        return RetryableTransferError(reason=reason)
    return TerminalTransferError(reason=reason)


class LedgerClient(ExternalAPIClient):
    """
    Client for the payout relayer.

    Constructed explicitly and injected into the settlement coordinator.
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        key = api_key if api_key is not None else settings.ledger_api_key
        super().__init__(
            base_url=base_url or settings.ledger_api_base_url,
            headers={"Authorization": f"Bearer {key}"},
            timeout=APIConstants.DEFAULT_TIMEOUT,
        )

    async def transfer(
        self,
        payee: str,
        amount: float,
        claim_key: str,
        currency: str = "cUSD",
    ) -> TransferOutcome:
        """
        Submit a payout transfer.

        Args:
            payee: Farmer wallet address
            amount: Amount to transfer
            claim_key: Claim key, sent as the idempotency key
            currency: Token symbol

        Returns:
            Receipt, RetryableTransferError or TerminalTransferError
        """
        try:
            data = await self.request(
                "POST",
                LedgerEndpoints.PAYOUTS,
                json={
                    "reference": claim_key,
                    "payee": payee,
                    "amount": amount,
                    "currency": currency,
                },
                headers={APIConstants.IDEMPOTENCY_KEY_HEADER: claim_key},
            )
        except ExternalAPIError as e:
            outcome = classify_transfer_error(e)
            logger.warning(f"Transfer for {claim_key} failed ({outcome.kind}): {outcome.reason}")
            return outcome

        return payout_to_outcome(data)

    async def lookup_transfer(self, claim_key: str) -> Optional[TransferOutcome]:
        """
        Ask the relayer what happened to a claim's transfer.

        Args:
            claim_key: Claim key used as the idempotency key

        Returns:
            None if the relayer has no transfer for the key, otherwise the
            recorded outcome. A lookup that cannot be completed is reported
            as retryable so callers never resubmit blindly.
        """
        try:
            data = await self.request("GET", LedgerEndpoints.get_payout(claim_key))
        except ExternalAPIError as e:
            if e.status_code == 404:
                return None
            return RetryableTransferError(reason=f"Transfer lookup failed: {e.message}")

        return payout_to_outcome(data)


# Singleton instance
_ledger_client: Optional[LedgerClient] = None


def get_ledger_client() -> LedgerClient:
    """
    Get or create the singleton ledger client.

    Returns:
        LedgerClient instance
    """
    global _ledger_client
    if _ledger_client is None:
        _ledger_client = LedgerClient()
    return _ledger_client
