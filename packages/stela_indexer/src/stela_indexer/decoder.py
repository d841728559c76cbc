"""
Event decoder.

Maps a raw log to a typed domain event. Dispatch is on keys[0] (the event
selector, starknet_keccak of the event name) over a closed table; each
entry fixes the exact keys/data arity of the event.

Two id layouts exist on the protocol contract:
- id in data[0], data[1] (AgreementSigned, AgreementCancelled, AgreementLiquidated)
- id in keys[1], keys[2] (InscriptionRepaid, SharesRedeemed, InscriptionLiquidated)
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from starknet_py.hash.selector import get_selector_from_name

from stela_indexer.chain.base import RawEvent
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
from stela_indexer.contracts.types import MAX_BPS
from stela_indexer.contracts.u256 import from_u256, normalize_address, parse_felt
from stela_indexer.errors import MalformedEventError, UnknownSelectorError

logger = logging.getLogger(__name__)

AGREEMENT_SIGNED = get_selector_from_name("AgreementSigned")
AGREEMENT_CANCELLED = get_selector_from_name("AgreementCancelled")
AGREEMENT_LIQUIDATED = get_selector_from_name("AgreementLiquidated")
INSCRIPTION_REPAID = get_selector_from_name("InscriptionRepaid")
SHARES_REDEEMED = get_selector_from_name("SharesRedeemed")
INSCRIPTION_LIQUIDATED = get_selector_from_name("InscriptionLiquidated")


@dataclass(frozen=True)
class _Position:
    tx_hash: str
    block_number: int
    log_index: int


def _decode_signed(keys: list[int], data: list[int], pos: _Position) -> DomainEvent:
    percentage = from_u256(data[3], data[4])
    if percentage > MAX_BPS:
        raise ValueError(f"issued_debt_percentage {percentage} exceeds {MAX_BPS}")
    return SignedEvent(
        subject_id=from_u256(data[0], data[1]),
        tx_hash=pos.tx_hash,
        block_number=pos.block_number,
        log_index=pos.log_index,
        lender=normalize_address(data[2]),
        issued_debt_percentage=percentage,
    )


def _decode_cancelled(keys: list[int], data: list[int], pos: _Position) -> DomainEvent:
    return CancelledEvent(
        subject_id=from_u256(data[0], data[1]),
        tx_hash=pos.tx_hash,
        block_number=pos.block_number,
        log_index=pos.log_index,
    )


def _decode_agreement_liquidated(keys: list[int], data: list[int], pos: _Position) -> DomainEvent:
    return AgreementLiquidatedEvent(
        subject_id=from_u256(data[0], data[1]),
        tx_hash=pos.tx_hash,
        block_number=pos.block_number,
        log_index=pos.log_index,
    )


def _decode_repaid(keys: list[int], data: list[int], pos: _Position) -> DomainEvent:
    return RepaidEvent(
        subject_id=from_u256(keys[1], keys[2]),
        tx_hash=pos.tx_hash,
        block_number=pos.block_number,
        log_index=pos.log_index,
        repayer=normalize_address(data[0]),
    )


def _decode_redeemed(keys: list[int], data: list[int], pos: _Position) -> DomainEvent:
    return RedeemedEvent(
        subject_id=from_u256(keys[1], keys[2]),
        tx_hash=pos.tx_hash,
        block_number=pos.block_number,
        log_index=pos.log_index,
        redeemer=normalize_address(keys[3]),
        shares=from_u256(data[0], data[1]),
    )


def _decode_inscription_liquidated(keys: list[int], data: list[int], pos: _Position) -> DomainEvent:
    return InscriptionLiquidatedEvent(
        subject_id=from_u256(keys[1], keys[2]),
        tx_hash=pos.tx_hash,
        block_number=pos.block_number,
        log_index=pos.log_index,
        liquidator=normalize_address(data[0]),
    )


@dataclass(frozen=True)
class EventSpec:
    name: str
    keys_len: int
    data_len: int
    build: Callable[[list[int], list[int], _Position], DomainEvent]


SELECTORS: dict[int, EventSpec] = {
    AGREEMENT_SIGNED: EventSpec("AgreementSigned", 1, 5, _decode_signed),
    AGREEMENT_CANCELLED: EventSpec("AgreementCancelled", 1, 2, _decode_cancelled),
    AGREEMENT_LIQUIDATED: EventSpec("AgreementLiquidated", 1, 2, _decode_agreement_liquidated),
    INSCRIPTION_REPAID: EventSpec("InscriptionRepaid", 3, 1, _decode_repaid),
    SHARES_REDEEMED: EventSpec("SharesRedeemed", 4, 2, _decode_redeemed),
    INSCRIPTION_LIQUIDATED: EventSpec("InscriptionLiquidated", 3, 1, _decode_inscription_liquidated),
}


def selector_keys() -> list[list[str]]:
    """Key filter for starknet_getEvents matching every known selector."""
    return [[hex(selector) for selector in SELECTORS]]


def decode(raw: RawEvent) -> DomainEvent | UnrecognizedEvent:
    """
    Decode a raw log.

    Returns:
        The typed domain event, or UnrecognizedEvent for a selector outside
        the protocol table

    Raises:
        MalformedEventError: known selector with wrong arity or invalid felts
    """
    log_index = raw.log_index if raw.log_index is not None else -1

    if not raw.keys:
        raise MalformedEventError("Event has no keys", tx_hash=raw.transaction_hash)

    try:
        selector = parse_felt(raw.keys[0])
    except ValueError:
        raise MalformedEventError(
            f"Selector is not a felt: {raw.keys[0]!r}",
            selector=raw.keys[0],
            tx_hash=raw.transaction_hash,
        )

    event_spec = SELECTORS.get(selector)
    if event_spec is None:
        return UnrecognizedEvent(
            selector=hex(selector),
            tx_hash=raw.transaction_hash,
            block_number=raw.block_number,
            log_index=log_index,
        )

    if len(raw.keys) != event_spec.keys_len or len(raw.data) != event_spec.data_len:
        raise MalformedEventError(
            f"{event_spec.name}: expected {event_spec.keys_len} keys and {event_spec.data_len} data felts, "
            f"got {len(raw.keys)} and {len(raw.data)}",
            selector=hex(selector),
            tx_hash=raw.transaction_hash,
        )

    try:
        keys = [parse_felt(k) for k in raw.keys]
        data = [parse_felt(d) for d in raw.data]
        return event_spec.build(
            keys,
            data,
            _Position(raw.transaction_hash, raw.block_number, log_index),
        )
    except ValueError as e:
        raise MalformedEventError(
            f"{event_spec.name}: {e}",
            selector=hex(selector),
            tx_hash=raw.transaction_hash,
        )


def decode_strict(raw: RawEvent) -> DomainEvent:
    """Like decode, but an unknown selector raises UnknownSelectorError."""
    event = decode(raw)
    if isinstance(event, UnrecognizedEvent):
        raise UnknownSelectorError(
            f"Unknown event selector {event.selector}",
            selector=event.selector,
            tx_hash=event.tx_hash,
        )
    return event
