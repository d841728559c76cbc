"""
Event kinds and entity statuses.

Statuses carry a rank: a transition is only allowed towards a higher rank,
which is how the reconciler keeps every status change monotonic.
"""

from enum import Enum

MAX_BPS = 10_000


class EventKind(str, Enum):
    """The five protocol event kinds the indexer understands."""

    SIGNED = "signed"
    CANCELLED = "cancelled"
    LIQUIDATED = "liquidated"
    REPAID = "repaid"
    REDEEMED = "redeemed"

    def __str__(self) -> str:
        return self.value


class SubjectType(str, Enum):
    """Which derived table an event's subject id belongs to."""

    AGREEMENT = "agreement"
    INSCRIPTION = "inscription"

    def __str__(self) -> str:
        return self.value


class AgreementStatus(str, Enum):
    """
    Agreement lifecycle.

    signed/partial -> filled -> {liquidated, cancelled}
    SIGNED is a valid stored value but is never derived: the reconciler
    only ever produces PARTIAL or FILLED from a signing.
    """

    SIGNED = "signed"
    PARTIAL = "partial"
    FILLED = "filled"
    CANCELLED = "cancelled"
    LIQUIDATED = "liquidated"

    @property
    def rank(self) -> int:
        return _AGREEMENT_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self.rank == 2

    def __str__(self) -> str:
        return self.value


_AGREEMENT_RANK = {
    AgreementStatus.SIGNED: 0,
    AgreementStatus.PARTIAL: 0,
    AgreementStatus.FILLED: 1,
    AgreementStatus.CANCELLED: 2,
    AgreementStatus.LIQUIDATED: 2,
}


class InscriptionStatus(str, Enum):
    """
    Inscription lifecycle, on two independent axes.

    Repayment axis: open -> {repaid, liquidated}
    Share settlement axis: open -> redeemed
    """

    OPEN = "open"
    REPAID = "repaid"
    REDEEMED = "redeemed"
    LIQUIDATED = "liquidated"

    @property
    def is_terminal(self) -> bool:
        return self is not InscriptionStatus.OPEN

    def __str__(self) -> str:
        return self.value


def signed_status(issued_debt_percentage: int) -> AgreementStatus:
    """Status implied by a cumulative issued debt percentage (bps)."""
    if issued_debt_percentage >= MAX_BPS:
        return AgreementStatus.FILLED
    return AgreementStatus.PARTIAL
