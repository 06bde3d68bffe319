from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

log = logging.getLogger(__name__)

# scope -> reasons, in first-trigger order
_Slots = Dict[str, List[str]]


def _add(slots: _Slots, scope: str, reasons: Iterable[str]) -> None:
    bucket = slots.setdefault(scope, [])
    for r in reasons:
        if r not in bucket:
            bucket.append(r)


def _pop_first(slots: _Slots) -> Optional[Tuple[str, List[str]]]:
    if not slots:
        return None
    scope = next(iter(slots))
    return scope, slots.pop(scope)


def _listing(slots: _Slots) -> List[Dict[str, Any]]:
    return [{"scope": s, "reasons": list(r)} for s, r in slots.items()]


class ScanCoordinator:
    """
    Single-flight scan runner.

    - At most one scan executes at a time.
    - Triggers arriving while a scan runs are recorded per scope: each scope
      gets at most one pending re-run, and pending scopes drain in the order
      they were first triggered once the current scan finishes.
    - Triggers arriving while idle are debounced: a burst inside the debounce
      window yields one scan per distinct scope.
    """

    def __init__(self, run_fn: Callable[[str, Tuple[str, ...]], Any], debounce_seconds: float = 2.0):
        self._run_fn = run_fn
        self._debounce = max(0.0, float(debounce_seconds or 0))
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._running = False
        self._pending: _Slots = {}
        self._debounced: _Slots = {}
        self._timer: Optional[threading.Timer] = None
        self.runs = 0
        self.last_result: Any = None

    # ---------- public ----------

    def trigger(self, scope: str, reason: str = "manual") -> str:
        """Schedule a scan; returns 'queued' when one is running, else 'scheduled'."""
        with self._lock:
            if self._running:
                _add(self._pending, scope, [reason])
                return "queued"
            _add(self._debounced, scope, [reason])
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self._fire)
            self._timer.daemon = True
            self._timer.start()
            return "scheduled"

    def run_now(self, scope: str, reason: str = "manual") -> Tuple[str, Any]:
        """
        Run synchronously when idle and return ('completed', result). When a scan
        is already running the request joins that scope's pending re-run: ('queued', None).
        """
        with self._lock:
            if self._running:
                _add(self._pending, scope, [reason])
                return "queued", None
            # fold a waiting trigger for the same scope into this run
            slot = {scope: self._debounced.pop(scope, [])}
            _add(slot, scope, [reason])
            if not self._debounced and self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._running = True

        result = self._execute(scope, slot[scope])
        nxt = self._complete(result)
        if nxt is not None:
            threading.Thread(target=self._drain, args=(nxt,), name="compliance-scan", daemon=True).start()
        return "completed", result

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        with self._idle:
            return self._idle.wait_for(self._is_idle, timeout)

    def state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "running": self._running,
                "pending": _listing(self._pending),
                "debounced": _listing(self._debounced),
                "runs": self.runs,
            }

    # ---------- internals ----------

    def _is_idle(self) -> bool:
        return not self._running and not self._debounced and not self._pending

    def _fire(self) -> None:
        with self._lock:
            burst, self._debounced, self._timer = self._debounced, {}, None
            for scope, reasons in burst.items():
                _add(self._pending, scope, reasons)
            if self._running or not self._pending:
                self._idle.notify_all()
                return
            self._running = True
            nxt = _pop_first(self._pending)
        self._drain(nxt)

    def _drain(self, nxt: Optional[Tuple[str, List[str]]]) -> None:
        while nxt is not None:
            nxt = self._complete(self._execute(*nxt))

    def _execute(self, scope: str, reasons: List[str]) -> Any:
        try:
            return self._run_fn(scope, tuple(reasons))
        except Exception:
            log.exception("Compliance scan for %s failed", scope)
            return None

    def _complete(self, result: Any) -> Optional[Tuple[str, List[str]]]:
        with self._lock:
            self.runs += 1
            self.last_result = result
            nxt = _pop_first(self._pending)
            if nxt is None:
                self._running = False
                self._idle.notify_all()
            return nxt

    def cancel(self) -> None:
        """Drop any debounced trigger that has not fired yet."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer, self._debounced = None, {}
            self._idle.notify_all()
