import logging
import time
from typing import Callable

from .errors import (
    LedgerUnavailable,
    MissingTimestamp,
    StaleTransaction,
    TransactionNotFound,
    ValidationFailed,
)
from .gateway import SolanaLedgerGateway

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_WINDOW = 3600


class TransactionValidator:
    """Accepts a transaction reference only if it landed within the window."""

    def __init__(
        self,
        gateway: SolanaLedgerGateway,
        freshness_window: int = DEFAULT_FRESHNESS_WINDOW,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.freshness_window = freshness_window
        self.clock = clock

    def validate(self, ref: str) -> int:
        """Return the unix time until which ``ref`` counts as fresh."""
        try:
            record = self.gateway.get_transaction(ref)
        except LedgerUnavailable as exc:
            logger.error("tx_validation_failed ref=%s error=%s", ref, exc)
            raise ValidationFailed("Failed to validate transaction") from exc

        if record is None:
            raise TransactionNotFound("Transaction not found")
        if record.block_time is None:
            raise MissingTimestamp("Transaction block time not available")

        age = self.clock() - record.block_time
        if age > self.freshness_window:
            logger.info("tx_validation_stale ref=%s age_s=%.0f", ref, age)
            raise StaleTransaction("Old Transaction")

        logger.info("tx_validation_ok ref=%s age_s=%.0f", ref, age)
        return record.block_time + self.freshness_window
