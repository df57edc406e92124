"""Per-provider API token pools with daily exhaustion tracking."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Collection, Iterable, Mapping

from .utils import calendar_date, now_ms


# Quota on these services resets at midnight Beijing time.
DEFAULT_DAY_OFFSETS: dict[str, float] = {
    "gitee": 8,
    "modelscope": 8,
}


@dataclass
class TokenHealth:
    exhausted: bool
    marked_date: str


@dataclass(frozen=True)
class TokenStats:
    total: int
    active: int
    exhausted: int

    @property
    def usable(self) -> bool:
        return self.active > 0


def parse_tokens(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [token.strip() for token in raw.split(",") if token.strip()]


class TokenPool:
    """Ordered tokens for one provider.

    ``health`` is shared by reference with whoever persists it; marks from a
    previous day are read as not exhausted and never need clearing.
    """

    def __init__(
        self,
        provider: str,
        tokens: Iterable[str],
        health: dict[str, TokenHealth] | None = None,
        *,
        day_offset_hours: float = 0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.provider = provider
        self.tokens = list(tokens)
        self.health = health if health is not None else {}
        self.day_offset_hours = day_offset_hours
        self._clock = clock

    def today(self) -> str:
        return calendar_date(self._clock(), self.day_offset_hours)

    def is_exhausted(self, token: str) -> bool:
        entry = self.health.get(token)
        return bool(entry and entry.exhausted and entry.marked_date == self.today())

    def stats(self) -> TokenStats:
        total = len(self.tokens)
        exhausted = sum(1 for token in self.tokens if self.is_exhausted(token))
        return TokenStats(total=total, active=total - exhausted, exhausted=exhausted)

    def select_key(self) -> str | None:
        if not self.tokens:
            return None
        for token in self.tokens:
            if not self.is_exhausted(token):
                return token
        # Marks are a cache, not a ban: hand out the first token anyway.
        return self.tokens[0]

    def next_key(self, tried: Collection[str]) -> str | None:
        remaining = [token for token in self.tokens if token not in tried]
        for token in remaining:
            if not self.is_exhausted(token):
                return token
        return remaining[0] if remaining else None

    def mark_exhausted(self, token: str) -> None:
        self.health[token] = TokenHealth(exhausted=True, marked_date=self.today())

    def __len__(self) -> int:
        return len(self.tokens)


class TokenPools:
    """One ``TokenPool`` per provider, sharing persisted health maps."""

    def __init__(
        self,
        raw_tokens: Mapping[str, str] | None = None,
        *,
        day_offsets: Mapping[str, float] | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._clock = clock
        self._day_offsets = dict(DEFAULT_DAY_OFFSETS)
        if day_offsets:
            self._day_offsets.update(day_offsets)
        self._pools: dict[str, TokenPool] = {}
        for provider, raw in (raw_tokens or {}).items():
            self.set_tokens(provider, raw)

    def pool(self, provider: str) -> TokenPool:
        pool = self._pools.get(provider)
        if pool is None:
            pool = self._build(provider, [], {})
            self._pools[provider] = pool
        return pool

    def set_tokens(self, provider: str, raw: str | None) -> TokenPool:
        existing = self._pools.get(provider)
        health = existing.health if existing else {}
        pool = self._build(provider, parse_tokens(raw), health)
        self._pools[provider] = pool
        return pool

    def load_health(self, provider: str, payload: Mapping[str, Any] | None) -> None:
        """Merge a persisted ``{"date": ..., "exhausted": {token: bool}}`` record."""
        if not isinstance(payload, Mapping):
            return
        date = payload.get("date")
        exhausted = payload.get("exhausted")
        if not isinstance(date, str) or not isinstance(exhausted, Mapping):
            return
        pool = self.pool(provider)
        for token, flag in exhausted.items():
            if flag:
                pool.health[str(token)] = TokenHealth(exhausted=True, marked_date=date)

    def health_snapshot(self, provider: str) -> dict[str, Any]:
        pool = self.pool(provider)
        today = pool.today()
        exhausted = {
            token: True
            for token, entry in pool.health.items()
            if entry.exhausted and entry.marked_date == today
        }
        return {"date": today, "exhausted": exhausted}

    def providers(self) -> list[str]:
        return list(self._pools.keys())

    def usable_providers(self) -> list[str]:
        return [name for name, pool in self._pools.items() if pool.tokens]

    def _build(self, provider: str, tokens: list[str], health: dict[str, TokenHealth]) -> TokenPool:
        return TokenPool(
            provider,
            tokens,
            health,
            day_offset_hours=self._day_offsets.get(provider, 0),
            clock=self._clock,
        )
