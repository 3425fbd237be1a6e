from typing import Dict, List, Optional


def _rank_slice(items: List[str], start: int, stop: int) -> List[str]:
    """Inclusive, Redis-style rank window; negative bounds count from the end."""
    size = len(items)
    if start < 0:
        start += size
    if stop < 0:
        stop += size
    start = max(start, 0)
    stop = min(stop, size - 1)
    if start > stop:
        return []
    return items[start:stop + 1]


class InMemoryLedgerStore:
    """
    Process-local LedgerStore with the same ordering rules as a Redis sorted
    set: ascending by score, ties broken by member. Used for tests and for
    local runs without a backend.
    """

    def __init__(self):
        self._values: Dict[str, str] = {}
        self._indexes: Dict[str, Dict[str, float]] = {}
        self._counters: Dict[str, int] = {}

    def _ordered(self, index: str) -> List[str]:
        scores = self._indexes.get(index, {})
        return [member for member, _ in sorted(scores.items(), key=lambda item: (item[1], item[0]))]

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._values.pop(key, None) is not None:
                removed += 1
            elif self._counters.pop(key, None) is not None:
                removed += 1
        return removed

    async def zadd(self, index: str, member: str, score: float) -> None:
        self._indexes.setdefault(index, {})[member] = score

    async def zrange(self, index: str, start: int, stop: int, desc: bool = False) -> List[str]:
        ordered = self._ordered(index)
        if desc:
            ordered.reverse()
        return _rank_slice(ordered, start, stop)

    async def zremrangebyrank(self, index: str, start: int, stop: int) -> int:
        doomed = _rank_slice(self._ordered(index), start, stop)
        scores = self._indexes.get(index, {})
        for member in doomed:
            scores.pop(member, None)
        return len(doomed)

    async def zcard(self, index: str) -> int:
        return len(self._indexes.get(index, {}))

    async def incr(self, key: str) -> int:
        self._counters[key] = self._counters.get(key, 0) + 1
        return self._counters[key]

    async def get_counter(self, key: str) -> int:
        return self._counters.get(key, 0)
