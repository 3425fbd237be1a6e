import unittest
from datetime import datetime, timedelta, timezone

from agentskan.application.scan_ledger import (
    SCAN_COUNT_KEY,
    SCAN_DATA_PREFIX,
    SCANS_KEY,
    ScanLedger,
)
from agentskan.domain.exceptions import PersistenceUnavailableException
from agentskan.domain.models import RiskLevel, ScanDraft
from agentskan.infrastructure.memory_store import InMemoryLedgerStore

START = datetime(2026, 1, 1, tzinfo=timezone.utc)


class _SteppingClock:
    def __init__(self, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = START
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current


class _BrokenStore:
    async def get(self, key):
        raise PersistenceUnavailableException("connection refused")

    async def set(self, key, value):
        raise PersistenceUnavailableException("connection refused")

    async def get_counter(self, key):
        raise PersistenceUnavailableException("connection refused")

    async def zrange(self, index, start, stop, desc=False):
        raise PersistenceUnavailableException("connection refused")


class _UnindexableStore(InMemoryLedgerStore):
    async def zadd(self, index, member, score):
        raise PersistenceUnavailableException("READONLY replica")


class _UncountableStore(InMemoryLedgerStore):
    async def zcard(self, index):
        raise PersistenceUnavailableException("connection reset")


def _draft(repo_name: str = "agent", score: int = 80) -> ScanDraft:
    return ScanDraft(
        repo_url=f"https://github.com/octocat/{repo_name}",
        repo_name=repo_name,
        owner="octocat",
        score=score,
        risk_level=RiskLevel.LOW,
        stars=12,
        forks=3,
        age_in_days=40,
        contributors=2,
        flags_count=1,
    )


class TestScanLedgerAppend(unittest.IsolatedAsyncioTestCase):
    async def test_append_persists_record_index_and_counter(self) -> None:
        store = InMemoryLedgerStore()
        ledger = ScanLedger(store, clock=_SteppingClock())

        receipt = await ledger.append(_draft())

        expected_ms = int(START.timestamp() * 1000)
        self.assertEqual(receipt.id, f"octocat-agent-{expected_ms}")
        self.assertEqual(receipt.scanned_at, START)
        self.assertIsNotNone(await store.get(f"{SCAN_DATA_PREFIX}{receipt.id}"))
        self.assertEqual(await store.zrange(SCANS_KEY, 0, -1), [receipt.id])
        self.assertEqual(await store.get_counter(SCAN_COUNT_KEY), 1)

    async def test_repeated_scans_get_distinct_ids_even_with_a_frozen_clock(self) -> None:
        ledger = ScanLedger(InMemoryLedgerStore(), clock=lambda: START)

        first = await ledger.append(_draft())
        second = await ledger.append(_draft())

        self.assertNotEqual(first.id, second.id)
        self.assertLess(first.scanned_at, second.scanned_at)

    async def test_unconfigured_ledger_is_a_no_op(self) -> None:
        ledger = ScanLedger(None)

        self.assertFalse(ledger.configured)
        self.assertIsNone(await ledger.append(_draft()))

    async def test_backend_failure_is_not_propagated(self) -> None:
        ledger = ScanLedger(_BrokenStore())

        with self.assertLogs("agentskan.application.scan_ledger", level="ERROR"):
            receipt = await ledger.append(_draft())

        self.assertIsNone(receipt)

    async def test_index_failure_removes_the_unindexed_record(self) -> None:
        store = _UnindexableStore()
        ledger = ScanLedger(store, clock=_SteppingClock())

        with self.assertLogs("agentskan.application.scan_ledger", level="ERROR"):
            receipt = await ledger.append(_draft())

        expected_ms = int(START.timestamp() * 1000)
        self.assertIsNone(receipt)
        self.assertIsNone(await store.get(f"{SCAN_DATA_PREFIX}octocat-agent-{expected_ms}"))
        self.assertEqual(await store.get_counter(SCAN_COUNT_KEY), 0)

    async def test_eviction_failure_still_returns_a_receipt(self) -> None:
        ledger = ScanLedger(_UncountableStore(), clock=_SteppingClock())

        with self.assertLogs("agentskan.application.scan_ledger", level="WARNING"):
            receipt = await ledger.append(_draft())

        self.assertIsNotNone(receipt)
        page = await ledger.list()
        self.assertEqual([entry.id for entry in page.entries], [receipt.id])
        self.assertEqual(page.total, 1)


class TestScanLedgerEviction(unittest.IsolatedAsyncioTestCase):
    async def test_appending_past_capacity_evicts_only_the_oldest(self) -> None:
        store = InMemoryLedgerStore()
        ledger = ScanLedger(store, clock=_SteppingClock())

        receipts = [await ledger.append(_draft(f"agent{i}")) for i in range(1001)]

        self.assertEqual(await store.zcard(SCANS_KEY), 1000)
        self.assertEqual(await ledger.lifetime_count(), 1001)
        self.assertIsNone(await store.get(f"{SCAN_DATA_PREFIX}{receipts[0].id}"))
        self.assertIsNotNone(await store.get(f"{SCAN_DATA_PREFIX}{receipts[1].id}"))

        retrievable = []
        offset = 0
        while True:
            page = await ledger.list(offset=offset, limit=100)
            retrievable.extend(page.entries)
            if not page.entries:
                break
            offset += 100

        self.assertEqual(len(retrievable), 1000)
        self.assertEqual(retrievable[0].id, receipts[-1].id)
        self.assertEqual(retrievable[-1].id, receipts[1].id)

    async def test_eviction_is_idempotent(self) -> None:
        store = InMemoryLedgerStore()
        ledger = ScanLedger(store, capacity=3, clock=_SteppingClock())
        for i in range(5):
            await ledger.append(_draft(f"agent{i}"))

        self.assertEqual(await ledger.evict_overflow(), 0)
        self.assertEqual(await store.zcard(SCANS_KEY), 3)
        self.assertEqual(await ledger.lifetime_count(), 5)

    async def test_catches_up_when_several_entries_are_over_capacity(self) -> None:
        store = InMemoryLedgerStore()
        for i in range(6):
            await store.zadd(SCANS_KEY, f"scan-{i}", i)
            await store.set(f"{SCAN_DATA_PREFIX}scan-{i}", "{}")
        ledger = ScanLedger(store, capacity=2)

        removed = await ledger.evict_overflow()

        self.assertEqual(removed, 4)
        self.assertEqual(await store.zrange(SCANS_KEY, 0, -1), ["scan-4", "scan-5"])
        self.assertIsNone(await store.get(f"{SCAN_DATA_PREFIX}scan-0"))


class TestScanLedgerList(unittest.IsolatedAsyncioTestCase):
    async def test_empty_ledger(self) -> None:
        page = await ScanLedger(InMemoryLedgerStore()).list(offset=0, limit=20)

        self.assertEqual(page.entries, [])
        self.assertEqual(page.total, 0)
        self.assertFalse(page.has_more)

    async def test_most_recent_first_with_pagination(self) -> None:
        ledger = ScanLedger(InMemoryLedgerStore(), clock=_SteppingClock())
        for i in range(5):
            await ledger.append(_draft(f"agent{i}", score=50 + i))

        first = await ledger.list(offset=0, limit=2)
        last = await ledger.list(offset=4, limit=2)

        self.assertEqual([entry.repo_name for entry in first.entries], ["agent4", "agent3"])
        self.assertEqual(first.total, 5)
        self.assertTrue(first.has_more)
        self.assertEqual([entry.repo_name for entry in last.entries], ["agent0"])
        self.assertFalse(last.has_more)

    async def test_stored_projection_round_trips(self) -> None:
        ledger = ScanLedger(InMemoryLedgerStore(), clock=_SteppingClock())
        receipt = await ledger.append(_draft())

        entry = (await ledger.list()).entries[0]

        self.assertEqual(entry.id, receipt.id)
        self.assertEqual(entry.scanned_at, START)
        self.assertEqual(entry.risk_level, RiskLevel.LOW)
        self.assertEqual(entry.flags_count, 1)

    async def test_total_reports_lifetime_count_after_eviction(self) -> None:
        ledger = ScanLedger(InMemoryLedgerStore(), capacity=2, clock=_SteppingClock())
        for i in range(4):
            await ledger.append(_draft(f"agent{i}"))

        page = await ledger.list(offset=0, limit=2)

        self.assertEqual(len(page.entries), 2)
        self.assertEqual(page.total, 4)
        self.assertTrue(page.has_more)

        beyond = await ledger.list(offset=2, limit=2)
        self.assertEqual(beyond.entries, [])
        self.assertFalse(beyond.has_more)

    async def test_skips_records_that_vanished(self) -> None:
        store = InMemoryLedgerStore()
        ledger = ScanLedger(store, clock=_SteppingClock())
        gone = await ledger.append(_draft("gone"))
        await ledger.append(_draft("kept"))
        await store.delete(f"{SCAN_DATA_PREFIX}{gone.id}")

        page = await ledger.list()

        self.assertEqual([entry.repo_name for entry in page.entries], ["kept"])

    async def test_unconfigured_or_failing_store_reads_empty(self) -> None:
        for ledger in (ScanLedger(None), ScanLedger(_BrokenStore())):
            page = await ledger.list()
            self.assertEqual(page.entries, [])
            self.assertEqual(page.total, 0)
            self.assertFalse(page.has_more)
            self.assertEqual(await ledger.lifetime_count(), 0)

    async def test_rejects_bad_windows(self) -> None:
        ledger = ScanLedger(InMemoryLedgerStore())

        with self.assertRaises(ValueError):
            await ledger.list(offset=-1, limit=10)
        with self.assertRaises(ValueError):
            await ledger.list(offset=0, limit=0)
