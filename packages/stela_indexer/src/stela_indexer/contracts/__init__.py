"""Event contracts - kinds, statuses, u256 helpers and domain events."""

from stela_indexer.contracts.events import (
    AgreementLiquidatedEvent,
    CancelledEvent,
    DomainEvent,
    InscriptionLiquidatedEvent,
    RedeemedEvent,
    RepaidEvent,
    SignedEvent,
    UnrecognizedEvent,
)
from stela_indexer.contracts.types import (
    MAX_BPS,
    AgreementStatus,
    EventKind,
    InscriptionStatus,
    SubjectType,
)

__all__ = [
    "MAX_BPS",
    "AgreementLiquidatedEvent",
    "AgreementStatus",
    "CancelledEvent",
    "DomainEvent",
    "EventKind",
    "InscriptionLiquidatedEvent",
    "InscriptionStatus",
    "RedeemedEvent",
    "RepaidEvent",
    "SignedEvent",
    "SubjectType",
    "UnrecognizedEvent",
]
