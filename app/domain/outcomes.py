"""
Result types exchanged between the settlement coordinator and its collaborators.

Transfer results are a tagged union so every branch of the settlement
logic is explicit: a receipt, a transient failure worth retrying, or a
permanent failure that needs manual review.
"""
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from app.domain.models import Claim


class Receipt(BaseModel):
    """Confirmation of a completed payout transfer."""
    kind: Literal["receipt"] = "receipt"
    transaction_hash: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


class RetryableTransferError(BaseModel):
    """
    Transient failure (timeout, network, nonce/gas issues).

    ``in_flight`` marks a transfer the relayer accepted but has not yet
    confirmed; it is not a failed attempt.
    """
    kind: Literal["retryable"] = "retryable"
    reason: str
    in_flight: bool = False


class TerminalTransferError(BaseModel):
    """Permanent failure (unregistered payee, invalid amount, revert)."""
    kind: Literal["terminal"] = "terminal"
    reason: str


TransferOutcome = Annotated[
    Union[Receipt, RetryableTransferError, TerminalTransferError],
    Field(discriminator="kind"),
]


class OutcomeKind(str, Enum):
    NO_CLAIM = "no_claim"
    CREATED = "created"


class ClaimOutcome(BaseModel):
    """What a settlement pass produced for one farmer and observation."""
    kind: OutcomeKind
    claim: Optional[Claim] = None
    reason: Optional[str] = None
    duplicate: bool = Field(
        default=False,
        description="True when an existing claim for the same trigger was returned"
    )

    @classmethod
    def no_claim(cls, reason: str) -> "ClaimOutcome":
        return cls(kind=OutcomeKind.NO_CLAIM, reason=reason)

    @classmethod
    def created(cls, claim: Claim, duplicate: bool = False) -> "ClaimOutcome":
        return cls(kind=OutcomeKind.CREATED, claim=claim, duplicate=duplicate)
