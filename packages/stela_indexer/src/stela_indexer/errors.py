"""
Error taxonomy for ingestion and liquidation.

Retriable:  TransportError (retryable=True)
Fatal:      RangeFetchError, MalformedEventError, OrderingViolation
Local:      SubmissionError (logged per liquidation candidate),
            ContractReadError (logged per terms read)

Replaying an already-recorded event is not an error; the reconciler
reports it as ApplyOutcome.DUPLICATE.
"""

from typing import Any


class IndexerError(Exception):
    """Base class for all indexer errors."""


class TransportError(IndexerError):
    """Network or node failure while talking to the chain."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.retryable = retryable


class RangeFetchError(IndexerError):
    """A block range could not be fetched; the caller surfaces it."""

    def __init__(self, message: str, from_block: int, to_block: int, attempts: int = 0):
        super().__init__(message)
        self.from_block = from_block
        self.to_block = to_block
        self.attempts = attempts


class DecodeError(IndexerError):
    """A raw log could not be turned into a domain event."""

    def __init__(self, message: str, selector: str | None = None, tx_hash: str | None = None):
        super().__init__(message)
        self.selector = selector
        self.tx_hash = tx_hash


class UnknownSelectorError(DecodeError):
    """Selector outside the protocol event table (strict decoding only)."""


class MalformedEventError(DecodeError):
    """Known selector with the wrong keys/data arity or invalid felts (ABI drift)."""


class OrderingViolation(IndexerError):
    """An event arrived for a position lower than one already committed."""

    def __init__(
        self,
        subject_id: str,
        incoming: tuple[int, int],
        committed: tuple[int, int],
    ):
        super().__init__(
            f"event at block {incoming[0]} (log {incoming[1]}) for {subject_id} arrived after "
            f"block {committed[0]} (log {committed[1]}) was committed"
        )
        self.subject_id = subject_id
        self.incoming = incoming
        self.committed = committed


class SubmissionError(IndexerError):
    """A submitted transaction was rejected or reverted."""

    def __init__(self, message: str, tx_hash: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class ContractReadError(IndexerError):
    """A view call returned felts that do not match the expected layout."""

    def __init__(self, message: str, entrypoint: str, subject_id: str | None = None):
        super().__init__(message)
        self.entrypoint = entrypoint
        self.subject_id = subject_id
