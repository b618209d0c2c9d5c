"""
Admission control for the quota-limited bank transaction feed.

The upstream provider allows a handful of calls per rolling 24 h window,
measured from the first call in the window. Counters are kept per user in
the injected KeyValueStore:

  feed:{user}:calls        calls used in the current window
  feed:{user}:first_call   epoch ms of the first call in the window (0 = none)
  feed:{user}:last_call    epoch ms of the last call (drives the cooldown)
  feed:{user}:last_action  epoch ms of the user's last interaction

Automatic refresh (should_refresh_cache) always keeps the last call of the
window in reserve for an explicit user refresh (force_refresh).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from splitsync.config import Settings, get_settings
from splitsync.storage.kv import KeyValueStore, get_int, set_int
from splitsync.timeutils import DAY_MS, HOUR_MS, MINUTE_MS, Clock, now_ms

logger = logging.getLogger(__name__)

# Within this distance of the window reset, a spent quota no longer blocks.
RESET_GRACE_MS = 30 * MINUTE_MS

CACHE_AGE_WEIGHT = 50.0
ACTIVE_HOURS_WEIGHT = 30.0
USER_ACTIVITY_WEIGHT = 20.0


def _ceil_minutes(ms: int) -> int:
    return -(-ms // MINUTE_MS)


@dataclass(frozen=True)
class RateLimitInfo:
    remaining_calls: int
    max_calls: int
    cooldown_minutes_remaining: int
    time_until_reset_ms: int


class RefreshPolicy:
    def __init__(
        self,
        store: KeyValueStore,
        last_fetch: Optional[Callable[[int], Optional[int]]] = None,
        settings: Optional[Settings] = None,
        clock: Clock = now_ms,
    ):
        """
        Args:
            store: Counter storage (SqlKeyValueStore in production).
            last_fetch: user_id -> epoch ms of the newest cached feed row, or None.
            settings: Quota, cooldown and priority tuning.
        """
        self.store = store
        self.last_fetch = last_fetch or (lambda user_id: None)
        self.settings = settings or get_settings()
        self._clock = clock

    # ─── Keys ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _key(user_id: int, name: str) -> str:
        return f"feed:{user_id}:{name}"

    # ─── Window bookkeeping ───────────────────────────────────────────────────

    @property
    def max_calls(self) -> int:
        return self.settings.feed_max_calls_per_day

    @property
    def cooldown_ms(self) -> int:
        return self.settings.feed_cooldown_minutes * MINUTE_MS

    def _window_expired(self, user_id: int) -> bool:
        first = get_int(self.store, self._key(user_id, "first_call"))
        return first == 0 or self._clock() - first >= DAY_MS

    def calls_in_window(self, user_id: int) -> int:
        if self._window_expired(user_id):
            return 0
        return get_int(self.store, self._key(user_id, "calls"))

    def remaining_calls(self, user_id: int) -> int:
        return max(0, self.max_calls - self.calls_in_window(user_id))

    def time_until_reset(self, user_id: int) -> int:
        """Milliseconds until the 24 h window reopens; 0 when no window is open."""
        if self._window_expired(user_id):
            return 0
        first = get_int(self.store, self._key(user_id, "first_call"))
        return max(0, first + DAY_MS - self._clock())

    def cooldown_remaining(self, user_id: int) -> int:
        last = get_int(self.store, self._key(user_id, "last_call"))
        return max(0, last + self.cooldown_ms - self._clock()) if last else 0

    def _near_reset(self, user_id: int) -> bool:
        return self.time_until_reset(user_id) < RESET_GRACE_MS

    # ─── Decisions ────────────────────────────────────────────────────────────

    def should_refresh_cache(self, user_id: int) -> bool:
        """Automatic refresh decision: cooldown, then quota, then reserve, then priority."""
        cooldown = self.cooldown_remaining(user_id)
        if cooldown > 0:
            logger.debug("User %s: in cooldown (%d min remaining)", user_id, _ceil_minutes(cooldown))
            return False

        calls = self.calls_in_window(user_id)
        if calls >= self.max_calls:
            if self._near_reset(user_id):
                logger.debug("User %s: quota spent but window resets soon", user_id)
                return True
            return False

        if calls == self.max_calls - 1:
            logger.debug("User %s: one call left, reserved for manual refresh", user_id)
            return False

        priority = self.refresh_priority(user_id)
        return priority > self.settings.feed_refresh_priority_threshold

    def refresh_priority(self, user_id: int) -> float:
        now = self._clock()
        last_fetch = self.last_fetch(user_id)
        lifetime_ms = self.settings.feed_cache_duration_hours * HOUR_MS
        if last_fetch is None:
            age_factor = 1.0
        else:
            age_factor = min(1.0, max(0, now - last_fetch) / lifetime_ms)

        cache_age = age_factor * CACHE_AGE_WEIGHT
        active_hours = 0.0 if self._in_low_activity_hours(now) else ACTIVE_HOURS_WEIGHT
        user_active = USER_ACTIVITY_WEIGHT if self._recently_active(user_id, now) else 0.0
        priority = cache_age + active_hours + user_active

        logger.debug(
            "User %s refresh priority %.1f (cache age %.1f, time of day %.0f, activity %.0f)",
            user_id, priority, cache_age, active_hours, user_active,
        )
        return priority

    def _in_low_activity_hours(self, now: int) -> bool:
        local = datetime.fromtimestamp(now / 1000, tz=timezone.utc).astimezone(
            ZoneInfo(self.settings.feed_timezone)
        )
        start = self.settings.feed_low_activity_start_hour
        end = self.settings.feed_low_activity_end_hour
        if start <= end:
            return start <= local.hour <= end
        # range wraps midnight, e.g. 22..5
        return local.hour >= start or local.hour <= end

    def _recently_active(self, user_id: int, now: int) -> bool:
        last_action = get_int(self.store, self._key(user_id, "last_action"))
        return last_action > 0 and now - last_action < HOUR_MS

    def force_refresh(self, user_id: int) -> bool:
        """Explicit user refresh: ignores cooldown and priority, not the quota."""
        return self.calls_in_window(user_id) < self.max_calls or self._near_reset(user_id)

    def is_account_specific_refresh_allowed(self, user_id: int) -> bool:
        """Fetches for a single known account skip the quota but not the cooldown."""
        return self.cooldown_remaining(user_id) == 0

    # ─── Recording ────────────────────────────────────────────────────────────

    def record_feed_call(self, user_id: int, account_specific: bool = False) -> None:
        now = self._clock()
        if not account_specific:
            if self._window_expired(user_id):
                set_int(self.store, self._key(user_id, "first_call"), now)
                set_int(self.store, self._key(user_id, "calls"), 1)
                logger.info("User %s: first feed call of a new window", user_id)
            else:
                calls = get_int(self.store, self._key(user_id, "calls")) + 1
                set_int(self.store, self._key(user_id, "calls"), calls)
                logger.info("User %s: feed call %d/%d", user_id, calls, self.max_calls)
        set_int(self.store, self._key(user_id, "last_call"), now)

    def update_user_activity(self, user_id: int) -> None:
        set_int(self.store, self._key(user_id, "last_action"), self._clock())

    def rate_limit_info(self, user_id: int) -> RateLimitInfo:
        cooldown = self.cooldown_remaining(user_id)
        return RateLimitInfo(
            remaining_calls=self.remaining_calls(user_id),
            max_calls=self.max_calls,
            cooldown_minutes_remaining=_ceil_minutes(cooldown),
            time_until_reset_ms=self.time_until_reset(user_id),
        )
