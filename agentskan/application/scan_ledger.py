import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from pydantic import ValidationError

from agentskan.application.ports import LedgerStore
from agentskan.domain.exceptions import PersistenceUnavailableException
from agentskan.domain.models import AppendReceipt, ScanDraft, ScanPage, StoredScan

logger = logging.getLogger(__name__)

SCANS_KEY = "scans"  # Sorted index of scan ids by insertion time (epoch ms)
SCAN_COUNT_KEY = "scan_count"  # Lifetime scan counter
SCAN_DATA_PREFIX = "scan:"  # Individual scan records

DEFAULT_CAPACITY = 1_000
MAX_PAGE_SIZE = 100

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanLedger:
    """
    Append-only, recency-ordered history of completed scans with a hard
    retention cap.

    Eviction piggybacks on the write path: once the index grows past
    `capacity`, the oldest entries are dropped. The lifetime counter is never
    decremented, so `total` may exceed what is actually retrievable.

    A missing or failing store never raises to the caller: appends become
    no-ops and reads come back empty.
    """

    def __init__(
        self,
        store: Optional[LedgerStore],
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.store = store
        self.capacity = capacity
        self._clock = clock
        self._last_timestamp_ms = 0

    @property
    def configured(self) -> bool:
        return self.store is not None

    def _next_timestamp_ms(self) -> int:
        # Ids and index scores must strictly increase within this process,
        # even when the clock stalls or two scans land in the same millisecond.
        now_ms = int(self._clock().timestamp() * 1000)
        timestamp_ms = max(now_ms, self._last_timestamp_ms + 1)
        self._last_timestamp_ms = timestamp_ms
        return timestamp_ms

    async def append(self, draft: ScanDraft) -> Optional[AppendReceipt]:
        """
        Persists a completed scan and trims the ledger back to capacity.

        Returns:
            Optional[AppendReceipt]: The generated id and timestamp, or None when
            the scan could not be persisted.
        """
        if self.store is None:
            logger.debug("Scan ledger not configured; skipping persistence.")
            return None

        timestamp_ms = self._next_timestamp_ms()
        scanned_at = EPOCH + timedelta(milliseconds=timestamp_ms)
        scan_id = f"{draft.owner}-{draft.repo_name}-{timestamp_ms}"
        record = StoredScan(**draft.model_dump(), id=scan_id, scanned_at=scanned_at)

        record_key = f"{SCAN_DATA_PREFIX}{scan_id}"
        try:
            await self.store.set(record_key, record.model_dump_json())
        except PersistenceUnavailableException as e:
            logger.error(f"Failed to save scan {scan_id}: {e}")
            return None

        try:
            await self.store.zadd(SCANS_KEY, scan_id, timestamp_ms)
        except PersistenceUnavailableException as e:
            logger.error(f"Failed to index scan {scan_id}: {e}")
            try:
                await self.store.delete(record_key)
            except PersistenceUnavailableException as cleanup_error:
                logger.warning(f"Could not remove unindexed record {record_key}: {cleanup_error}")
            return None

        # From here on the scan is listable; later failures are logged only.
        try:
            await self.store.incr(SCAN_COUNT_KEY)
        except PersistenceUnavailableException as e:
            logger.warning(f"Failed to bump lifetime scan count for {scan_id}: {e}")

        try:
            await self.evict_overflow()
        except PersistenceUnavailableException as e:
            logger.warning(f"Eviction after scan {scan_id} failed; the next append retries it: {e}")

        logger.info(f"Recorded scan {scan_id} (score {record.score}, {record.risk_level.value} risk).")
        return AppendReceipt(id=scan_id, scanned_at=scanned_at)

    async def evict_overflow(self) -> int:
        """
        Removes the oldest entries beyond capacity. Safe to run redundantly:
        against an already-trimmed index it does nothing.

        Returns:
            int: Number of index entries removed.
        """
        if self.store is None:
            return 0

        count = await self.store.zcard(SCANS_KEY)
        excess = count - self.capacity
        if excess <= 0:
            return 0

        to_remove = await self.store.zrange(SCANS_KEY, 0, excess - 1)
        if not to_remove:
            return 0

        await self.store.delete(*(f"{SCAN_DATA_PREFIX}{scan_id}" for scan_id in to_remove))
        removed = await self.store.zremrangebyrank(SCANS_KEY, 0, excess - 1)
        logger.info(f"Evicted {removed} scan(s) beyond the {self.capacity}-entry cap.")
        return removed

    async def list(self, offset: int = 0, limit: int = 20) -> ScanPage:
        """
        Returns scans most-recent-first, skipping `offset` and taking up to
        `limit` (capped at MAX_PAGE_SIZE).
        """
        if offset < 0:
            raise ValueError("offset must be non-negative")
        if limit < 1:
            raise ValueError("limit must be at least 1")
        limit = min(limit, MAX_PAGE_SIZE)

        if self.store is None:
            return ScanPage()

        try:
            total = await self.store.get_counter(SCAN_COUNT_KEY)
            scan_ids = await self.store.zrange(SCANS_KEY, offset, offset + limit - 1, desc=True)
            if not scan_ids:
                return ScanPage(entries=[], total=total, has_more=False)

            entries: List[StoredScan] = []
            for scan_id in scan_ids:
                raw = await self.store.get(f"{SCAN_DATA_PREFIX}{scan_id}")
                if raw is None:
                    # Evicted between the range query and the read
                    continue
                try:
                    entries.append(StoredScan.model_validate_json(raw))
                except ValidationError as e:
                    logger.warning(f"Skipping unreadable scan record {scan_id}: {e}")
        except PersistenceUnavailableException as e:
            logger.error(f"Failed to fetch scans: {e}")
            return ScanPage()

        return ScanPage(entries=entries, total=total, has_more=offset + limit < total)

    async def lifetime_count(self) -> int:
        if self.store is None:
            return 0
        try:
            return await self.store.get_counter(SCAN_COUNT_KEY)
        except PersistenceUnavailableException as e:
            logger.error(f"Failed to fetch scan count: {e}")
            return 0
