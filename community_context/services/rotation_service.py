"""
Per-user rotation of community categories and audience segments.

Category rotation walks a shuffled cycle of keys so every key is served before any
repeats. The state transition is a pure function (rotate_cycle); the scheduler only
loads and persists it.
"""
import asyncio
import logging
import random
from collections import defaultdict
from typing import Callable, Optional

from community_context.core.logger import logs
from community_context.models.community_model import CycleState
from community_context.repos.community_cache import CommunityCache

Shuffle = Callable[[list[str]], list[str]]


def random_shuffle(keys: list[str]) -> list[str]:
    shuffled = list(keys)
    random.shuffle(shuffled)
    return shuffled


def parse_cycle_state(raw, available_keys: list[str]) -> Optional[CycleState]:
    """Accepts the current dict shape or a legacy bare list of remaining keys."""
    allowed = set(available_keys)
    if isinstance(raw, list):
        return CycleState(remaining=[k for k in raw if k in allowed], cycles_completed=0)
    if isinstance(raw, dict) and isinstance(raw.get("remaining"), list):
        return CycleState(
            remaining=[k for k in raw["remaining"] if k in allowed],
            cycles_completed=int(raw.get("cycles_completed") or 0)
        )
    return None


def rotate_cycle(
    state: Optional[CycleState],
    count: int,
    available_keys: list[str],
    shuffle: Shuffle = random_shuffle,
    refresh_threshold: int = 2,
) -> tuple[CycleState, list[str], bool]:
    """
    Returns (next_state, selected, should_refresh).
    `state.remaining` must already be filtered to available_keys.
    """
    remaining = list(state.remaining) if state else []
    cycles_completed = state.cycles_completed if state else 0

    if not remaining:
        cycles_completed += 1
        remaining = shuffle(available_keys)

    if len(remaining) >= count:
        selected = remaining[:count]
        remaining = remaining[count:]
    else:
        carry = remaining
        refill = shuffle(available_keys)
        # Carried keys are never picked again from the refill and wait at its end
        picked = [k for k in refill if k not in carry][:count - len(carry)]
        selected = carry + picked
        remaining = [k for k in refill if k not in picked and k not in carry] + [k for k in refill if k in carry]

    should_refresh = cycles_completed >= refresh_threshold
    next_state = CycleState(
        remaining=remaining,
        cycles_completed=0 if should_refresh else cycles_completed
    )
    return next_state, selected, should_refresh


class CategoryRotationScheduler:
    def __init__(self, cache: CommunityCache, refresh_cycles: int = 2, shuffle: Shuffle = random_shuffle):
        self.cache = cache
        self.refresh_cycles = refresh_cycles
        self.shuffle = shuffle
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def select_categories(self, user_id: str, count: int, available_keys: list[str]) -> tuple[list[str], bool]:
        if not available_keys:
            return [], False
        if not self.cache.available:
            return self.shuffle(available_keys)[:count], False

        async with self._locks[user_id]:
            raw = await self.cache.get_cycle_state(user_id)
            state = parse_cycle_state(raw, available_keys)
            next_state, selected, should_refresh = rotate_cycle(
                state, count, available_keys, self.shuffle, self.refresh_cycles
            )
            persisted = await self.cache.set_cycle_state(user_id, next_state.model_dump())

        if not persisted:
            # Without stored state there is no cycle to count
            should_refresh = False

        logs.log(logging.INFO, f"Rotated categories for user {user_id}", extra={
            "selected": selected,
            "remaining": next_state.remaining,
            "cycles_completed": next_state.cycles_completed,
            "should_refresh": should_refresh
        })
        return selected, should_refresh

    async def peek_next_categories(self, user_id: str, count: int) -> list[str]:
        if not self.cache.available:
            return []
        raw = await self.cache.get_cycle_state(user_id)
        if isinstance(raw, list):
            return raw[:count]
        if isinstance(raw, dict) and isinstance(raw.get("remaining"), list):
            return raw["remaining"][:count]
        return []


class AudienceSegmentRotator:
    """Round-robins a user's audience segments per content category."""

    def __init__(self, cache: CommunityCache):
        self.cache = cache

    async def rotate(self, user_id: str, category: str, segments: list[str]) -> list[str]:
        normalized = [s for s in segments if s]
        if len(normalized) <= 1 or not self.cache.available:
            return normalized[:1]

        last = await self.cache.get_last_audience(user_id, category)
        last_index = normalized.index(last) if last in normalized else -1
        chosen = normalized[(last_index + 1) % len(normalized)]
        await self.cache.set_last_audience(user_id, category, chosen)
        return [chosen]
