# =============================================================================
# Cooperative Cancellation — Single-Flight Run Tokens
# =============================================================================
#
# Every top-level action (a user turn, a briefing batch, a profiling batch)
# runs under a CancellableRun. The RunScope owned by the ResearchTeam keeps
# at most one "current" run: starting a new one cancels the previous run, so
# a new user action always supersedes a stale one.
#
# The run is passed explicitly into every orchestration call. Long-running
# steps call `raise_if_cancelled()` at each suspension point (before each
# remote call, before fan-out, before aggregation). Cancellation never
# interrupts an in-flight remote call; it only stops the pipeline from
# acting on the result.
# =============================================================================

from __future__ import annotations

import logging
import uuid

from research_team.errors import Cancelled

logger = logging.getLogger(__name__)


class CancellableRun:
    """Cancellation signal shared by all operations of one top-level action."""

    def __init__(self, label: str = "run") -> None:
        self.run_id = uuid.uuid4().hex[:12]
        self.label = label
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            logger.info("Cancelling %s %s", self.label, self.run_id)
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        """Raise Cancelled if this run has been cancelled."""
        if self._cancelled:
            raise Cancelled()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "live"
        return f"CancellableRun({self.label!r}, {self.run_id}, {state})"


class RunScope:
    """
    Holder of the single live run.

    Last writer wins: `start()` cancels and discards whatever run was
    current before installing a fresh one.
    """

    def __init__(self) -> None:
        self._current: CancellableRun | None = None

    @property
    def current(self) -> CancellableRun | None:
        return self._current

    def start(self, label: str = "run") -> CancellableRun:
        if self._current is not None:
            self._current.cancel()
        self._current = CancellableRun(label)
        logger.debug("Started %s %s", label, self._current.run_id)
        return self._current

    def cancel_current(self) -> bool:
        """Cancel the live run. Returns False when nothing was running."""
        if self._current is None:
            return False
        self._current.cancel()
        self._current = None
        return True

    def is_current(self, run: CancellableRun) -> bool:
        return self._current is run and not run.cancelled

    def finish(self, run: CancellableRun) -> None:
        """Release `run` if it is still the current one."""
        if self._current is run:
            self._current = None
