"""
Rent check: every RENT_CHECK_INTERVAL, move lapsed rentals into grace period and
evict tenants whose grace period is over.

A space is overdue once its due date passes. It stays in `grace_period` for
grace_period_hours, then the tenant is evicted and the space goes back to the
vacant defaults. Reserved spaces are never touched. Both transitions are
conditional writes in SpaceStore, so a renewal that lands mid-sweep wins.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler

from spacerent.core.clock import Clock, utcnow
from spacerent.core.constants import RENT_CHECK_JOB_ID
from spacerent.services.space_store import SpaceStore
from spacerent.services.space_views import public_view

logger = logging.getLogger(__name__)

Notifier = Callable[[dict[str, Any]], None]


@dataclass
class SweepResult:
    evictions: list[dict[str, Any]] = field(default_factory=list)
    grace_period_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"evictions": self.evictions, "gracePeriodCount": len(self.grace_period_ids)}


def process_overdue_rentals(store: SpaceStore, now: datetime, grace_period_hours: float) -> SweepResult:
    """
    One sweep at `now`. Evict where now > due + grace; mark `grace_period` where
    due < now <= due + grace and the space is still `current`.
    """
    cutoff = now - timedelta(hours=grace_period_hours)
    result = SweepResult()

    for space in store.find_overdue(cutoff):
        if not store.evict_if_overdue(space.space_id, space.owner_wallet, cutoff):
            # Renewed or vacated since the read.
            continue
        result.evictions.append({"spaceId": space.space_id, "previousOwner": space.owner_username})
        logger.info(
            "[EVICTED] space=%s owner=%s (%s...) due=%s",
            space.space_id, space.owner_username, (space.owner_wallet or "")[:8], space.rent_due_date,
        )

    for space in store.find_entering_grace(now, cutoff):
        if store.mark_grace_period(space.space_id, now, cutoff):
            result.grace_period_ids.append(space.space_id)
            logger.info("Space %s entered grace period (owner=%s)", space.space_id, space.owner_username)

    return result


class RentScheduler:
    """Periodic rent check on an APScheduler background thread, plus a run-once entry point."""

    def __init__(
        self,
        store: SpaceStore,
        *,
        interval_seconds: float = 60,
        grace_period_hours: float = 12,
        notifier: Notifier | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self.interval_seconds = interval_seconds
        self.grace_period_hours = grace_period_hours
        self._notifier = notifier
        self._clock = clock
        self._scheduler: BackgroundScheduler | None = None
        self._startup_check: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Start the interval job and run one check on a daemon thread. No-op when already running."""
        with self._lock:
            if self.is_running:
                return
            scheduler = BackgroundScheduler(timezone=timezone.utc)
            scheduler.add_job(
                self.check_rentals,
                "interval",
                seconds=self.interval_seconds,
                id=RENT_CHECK_JOB_ID,
                max_instances=1,
                coalesce=True,
            )
            scheduler.start()
            self._scheduler = scheduler
            self._startup_check = threading.Thread(target=self._startup_tick, name="rent_check_startup", daemon=True)
            self._startup_check.start()
        logger.info("Rent scheduler started (interval %ss, grace %sh)", self.interval_seconds, self.grace_period_hours)

    def _startup_tick(self) -> None:
        result = self.check_rentals()
        if result.get("error"):
            logger.warning("Rent check on startup failed: %s", result["error"])
            return
        logger.info("Rent check tick on startup; next tick in %ss", self.interval_seconds)

    def wait_for_startup_check(self, timeout: float | None = None) -> bool:
        """Block until the startup check has finished. False on timeout."""
        thread = self._startup_check
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def stop(self) -> None:
        with self._lock:
            if self._scheduler is None:
                return
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
        logger.info("Rent scheduler stopped")

    def trigger_check(self) -> dict[str, Any]:
        """Run one check now without touching the timer."""
        return self.check_rentals()

    def check_rentals(self) -> dict[str, Any]:
        try:
            result = process_overdue_rentals(self._store, self._clock(), self.grace_period_hours)
        except Exception as e:
            logger.exception("Rent check failed: %s", e)
            return {"evictions": [], "gracePeriodCount": 0, "error": str(e)}

        if result.evictions:
            logger.info("Evicted %s tenants", len(result.evictions))
        if result.grace_period_ids:
            logger.info("%s spaces entered grace period", len(result.grace_period_ids))
        self._notify(result)
        return result.to_dict()

    def _notify(self, result: SweepResult) -> None:
        if self._notifier is None:
            return
        changed = [e["spaceId"] for e in result.evictions] + result.grace_period_ids
        for space_id in changed:
            space = self._store.get(space_id)
            if space is not None:
                self._send({"type": "space_updated", "space": public_view(space)})
        for eviction in result.evictions:
            self._send({"type": "space_evicted", **eviction})

    def _send(self, payload: dict[str, Any]) -> None:
        try:
            self._notifier(payload)
        except Exception as e:
            logger.warning("Rent check notification failed (%s): %s", payload.get("type"), e, exc_info=True)
