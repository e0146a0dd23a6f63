"""Issuance run records.

A run is opened before the first step of an issuance and advanced as each
step commits. Runs that stopped after claiming inventory, or that finished
with warnings, are what a reconciliation job needs; everything else only
has to be kept for a while for inspection.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from supabase import Client

from .errors import StoreUnavailable
from .inventory import STORE_ERRORS
from .models import IssuanceRun, IssuanceStep, RewardType, RunStatus

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RunLog(ABC):
    def start(self, merchant_address: str, reward_type: RewardType) -> IssuanceRun:
        now = _now()
        run = IssuanceRun(
            run_id=str(uuid4()),
            merchant_address=merchant_address,
            reward_type=reward_type,
            started_at=now,
            updated_at=now,
        )
        self._insert(run)
        return run

    def advance(self, run_id: str, step: IssuanceStep, **changes) -> IssuanceRun:
        return self._update(run_id, furthest_step=step, **changes)

    def finish(self, run_id: str, status: RunStatus, error: Optional[str] = None) -> IssuanceRun:
        return self._update(run_id, status=status, error=error)

    @abstractmethod
    def _insert(self, run: IssuanceRun) -> None:
        ...

    @abstractmethod
    def _update(self, run_id: str, **changes) -> IssuanceRun:
        ...

    @abstractmethod
    def get(self, run_id: str) -> Optional[IssuanceRun]:
        ...

    @abstractmethod
    def all(self) -> list[IssuanceRun]:
        """Retained runs, oldest first."""

    @abstractmethod
    def incomplete(self) -> list[IssuanceRun]:
        """Runs that need reconciliation, oldest first."""


class InMemoryRunLog(RunLog):
    """Process-local run log.

    Running runs and runs needing reconciliation are always kept. Other
    finished runs are kept up to ``max_recent`` and then dropped oldest
    first.
    """

    def __init__(self, max_recent: int = 256):
        self._lock = threading.Lock()
        self.max_recent = max_recent
        self.runs: dict[str, IssuanceRun] = {}
        self._settled: deque[str] = deque()

    def _insert(self, run: IssuanceRun) -> None:
        with self._lock:
            self.runs[run.run_id] = run

    def _update(self, run_id: str, **changes) -> IssuanceRun:
        with self._lock:
            run = self.runs[run_id].model_copy(update={**changes, "updated_at": _now()})
            self.runs[run_id] = run
            if run.status != RunStatus.RUNNING and not run.needs_reconciliation():
                self._settle(run_id)
        return run

    def _settle(self, run_id: str) -> None:
        self._settled.append(run_id)
        while len(self._settled) > self.max_recent:
            self.runs.pop(self._settled.popleft(), None)

    def get(self, run_id: str) -> Optional[IssuanceRun]:
        return self.runs.get(run_id)

    def all(self) -> list[IssuanceRun]:
        with self._lock:
            return sorted(self.runs.values(), key=lambda run: run.started_at)

    def incomplete(self) -> list[IssuanceRun]:
        return [run for run in self.all() if run.needs_reconciliation()]


class SupabaseRunLog(RunLog):
    """Run log kept in a Supabase table (``reward_runs`` by default).

    One row per run, keyed by ``run_id``, with the ``IssuanceRun`` fields as
    columns. Opening a run must reach the table. Later writes that fail are
    logged and the run carries on, since by then ledger state may already
    have changed.
    """

    def __init__(self, client: Client, table: str = "reward_runs", recent_limit: int = 100):
        self.client = client
        self.table = table
        self.recent_limit = recent_limit
        self._lock = threading.Lock()
        self._active: dict[str, IssuanceRun] = {}

    def _insert(self, run: IssuanceRun) -> None:
        try:
            self.client.table(self.table).insert(run.model_dump(mode="json")).execute()
        except STORE_ERRORS as exc:
            raise StoreUnavailable(f"Failed to open issuance run: {exc}") from exc
        with self._lock:
            self._active[run.run_id] = run

    def _update(self, run_id: str, **changes) -> IssuanceRun:
        with self._lock:
            current = self._active.get(run_id)
        if current is None:
            current = self.get(run_id)
            if current is None:
                raise KeyError(run_id)
        run = current.model_copy(update={**changes, "updated_at": _now()})
        with self._lock:
            if run.status == RunStatus.RUNNING:
                self._active[run_id] = run
            else:
                self._active.pop(run_id, None)

        row = run.model_dump(mode="json", include={*changes, "updated_at"})
        try:
            self.client.table(self.table).update(row).eq("run_id", run_id).execute()
        except STORE_ERRORS as exc:
            logger.error(
                "run_log_write_failed table=%s run=%s step=%s status=%s error=%s",
                self.table, run_id, run.furthest_step.value, run.status.value, exc,
            )
        return run

    def get(self, run_id: str) -> Optional[IssuanceRun]:
        try:
            resp = self.client.table(self.table).select("*").eq("run_id", run_id).limit(1).execute()
        except STORE_ERRORS as exc:
            raise StoreUnavailable(f"Failed to fetch run {run_id}: {exc}") from exc
        return IssuanceRun.model_validate(resp.data[0]) if resp.data else None

    def all(self) -> list[IssuanceRun]:
        try:
            resp = (
                self.client.table(self.table)
                .select("*")
                .order("started_at", desc=True)
                .limit(self.recent_limit)
                .execute()
            )
        except STORE_ERRORS as exc:
            raise StoreUnavailable(f"Failed to list runs: {exc}") from exc
        runs = [IssuanceRun.model_validate(row) for row in resp.data or []]
        return sorted(runs, key=lambda run: run.started_at)

    def incomplete(self) -> list[IssuanceRun]:
        try:
            resp = (
                self.client.table(self.table)
                .select("*")
                .in_("status", [RunStatus.FAILED.value, RunStatus.COMPLETED_WITH_WARNINGS.value])
                .order("started_at")
                .execute()
            )
        except STORE_ERRORS as exc:
            raise StoreUnavailable(f"Failed to list incomplete runs: {exc}") from exc
        runs = [IssuanceRun.model_validate(row) for row in resp.data or []]
        return [run for run in runs if run.needs_reconciliation()]
