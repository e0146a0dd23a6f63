"""Off-chain reward inventory.

Reservation is a compare-and-set: an item is handed to exactly one caller
by setting ``claimed_by`` only where it is still unset and the item is not
yet consumed. Consumption (``reserved``) is recorded separately once the
reward has been issued on-chain.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from .errors import NoInventory, StoreUnavailable
from .models import RewardItem, RewardType

logger = logging.getLogger(__name__)

STORE_ERRORS = (APIError, httpx.HTTPError)


class InventoryStore(ABC):
    @abstractmethod
    def reserve_one_unreserved(self, reward_type: RewardType, claim_id: str) -> RewardItem:
        """Claim one available item of ``reward_type`` for ``claim_id``."""

    @abstractmethod
    def mark_consumed(self, address: str) -> None:
        ...

    @abstractmethod
    def get(self, address: str) -> Optional[RewardItem]:
        ...


class InMemoryInventoryStore(InventoryStore):
    def __init__(self, items: Optional[Iterable[RewardItem]] = None):
        self._lock = threading.Lock()
        self.items: dict[str, RewardItem] = {}
        for item in items or []:
            self.add(item)

    def add(self, item: RewardItem) -> None:
        with self._lock:
            self.items[item.address] = item

    def reserve_one_unreserved(self, reward_type: RewardType, claim_id: str) -> RewardItem:
        with self._lock:
            for address, item in self.items.items():
                if item.reward_type == reward_type and item.is_available():
                    claimed = item.model_copy(update={"claimed_by": claim_id})
                    self.items[address] = claimed
                    return claimed
        raise NoInventory(f"No unminted NFT found for type: {reward_type.value}")

    def mark_consumed(self, address: str) -> None:
        with self._lock:
            item = self.items.get(address)
            if item is not None and not item.reserved:
                self.items[address] = item.model_copy(update={"reserved": True})

    def get(self, address: str) -> Optional[RewardItem]:
        return self.items.get(address)


class SupabaseInventoryStore(InventoryStore):
    """Inventory kept in a Supabase table (``nft_data`` by default).

    Columns: ``id``, ``nft_address``, ``nft_type``, ``minted`` and
    ``claimed_by``.
    """

    COLUMNS = "id, nft_address, nft_type, minted, claimed_by"

    def __init__(self, client: Client, table: str = "nft_data", batch_size: int = 5, max_rounds: int = 3):
        self.client = client
        self.table = table
        self.batch_size = batch_size
        self.max_rounds = max_rounds

    @staticmethod
    def _to_item(row: dict[str, Any]) -> RewardItem:
        return RewardItem(
            id=row.get("id"),
            address=row["nft_address"],
            reward_type=RewardType(row["nft_type"]),
            reserved=bool(row.get("minted")),
            claimed_by=row.get("claimed_by"),
        )

    def _candidates(self, reward_type: RewardType) -> list[dict]:
        resp = (
            self.client.table(self.table)
            .select(self.COLUMNS)
            .eq("minted", False)
            .eq("nft_type", reward_type.value)
            .is_("claimed_by", "null")
            .limit(self.batch_size)
            .execute()
        )
        return resp.data or []

    def _claim(self, row_id: Any, claim_id: str) -> Optional[dict]:
        resp = (
            self.client.table(self.table)
            .update({"claimed_by": claim_id})
            .eq("id", row_id)
            .eq("minted", False)
            .is_("claimed_by", "null")
            .execute()
        )
        return resp.data[0] if resp.data else None

    def reserve_one_unreserved(self, reward_type: RewardType, claim_id: str) -> RewardItem:
        try:
            for _ in range(self.max_rounds):
                rows = self._candidates(reward_type)
                if not rows:
                    raise NoInventory(f"No unminted NFT found for type: {reward_type.value}")
                for row in rows:
                    claimed = self._claim(row["id"], claim_id)
                    if claimed is not None:
                        return self._to_item(claimed)
                    logger.info("inventory_claim_lost table=%s id=%s claim=%s", self.table, row["id"], claim_id)
        except STORE_ERRORS as exc:
            raise StoreUnavailable(f"Failed to reserve NFT from {self.table}: {exc}") from exc
        raise StoreUnavailable(
            f"Could not claim a {reward_type.value} NFT after {self.max_rounds} rounds of contention"
        )

    def mark_consumed(self, address: str) -> None:
        try:
            self.client.table(self.table).update({"minted": True}).eq("nft_address", address).execute()
        except STORE_ERRORS as exc:
            raise StoreUnavailable(f"Failed to mark NFT as minted: {exc}") from exc
        logger.info("inventory_consumed table=%s address=%s", self.table, address)

    def get(self, address: str) -> Optional[RewardItem]:
        try:
            resp = (
                self.client.table(self.table)
                .select(self.COLUMNS)
                .eq("nft_address", address)
                .limit(1)
                .execute()
            )
        except STORE_ERRORS as exc:
            raise StoreUnavailable(f"Failed to fetch NFT {address}: {exc}") from exc
        return self._to_item(resp.data[0]) if resp.data else None
