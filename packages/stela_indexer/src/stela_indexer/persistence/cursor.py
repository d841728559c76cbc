"""
Cursor store.

The cursor is the highest block whose events are all durably reconciled;
it is the only source of resumability. advance() only stages the change so
the reconciler can commit it together with the block's last event.
"""

import logging

from sqlalchemy.orm import Session

from stela_indexer.persistence.models import IndexerCursor

logger = logging.getLogger(__name__)

CURSOR_KEY = "last_block"


class CursorStore:
    def __init__(self, db: Session, key: str = CURSOR_KEY):
        self.db = db
        self.key = key

    def _row(self) -> IndexerCursor | None:
        return self.db.query(IndexerCursor).filter(IndexerCursor.key == self.key).first()

    def get(self) -> int | None:
        row = self._row()
        return row.block_number if row else None

    def advance(self, block_number: int) -> bool:
        """
        Stage a move of the cursor to block_number. Never lowers it.

        Returns True if the cursor moved. The caller commits.
        """
        row = self._row()
        if row is None:
            self.db.add(IndexerCursor(key=self.key, block_number=block_number))
            self.db.flush()
            return True

        if block_number <= row.block_number:
            return False

        row.block_number = block_number
        self.db.flush()
        return True

    def reset(self, block_number: int) -> None:
        """Operator override: set the cursor to any block and commit."""
        if block_number < 0:
            raise ValueError(f"block_number must be >= 0, got {block_number}")

        row = self._row()
        previous = row.block_number if row else None
        if row is None:
            self.db.add(IndexerCursor(key=self.key, block_number=block_number))
        else:
            row.block_number = block_number
        self.db.commit()

        logger.warning(
            f"Cursor reset from {previous} to {block_number}",
            extra={"block_number": block_number},
        )
