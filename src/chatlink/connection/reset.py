"""
Session reset decisions on identity change.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ResetDecision:
    """What an identity change requires of local state."""

    wipe_store: bool
    rebuild_workers: bool


def needs_reset(old_user_id: str | None, new_user_id: str, worker_count: int) -> ResetDecision:
    """Decide whether switching to ``new_user_id`` wipes the store and rebuilds workers.

    A new or different user gets a wiped store and fresh workers. The same
    user never gets a wipe; workers are only built if there are none.
    """
    if old_user_id is None or old_user_id != new_user_id:
        return ResetDecision(wipe_store=True, rebuild_workers=True)
    return ResetDecision(wipe_store=False, rebuild_workers=worker_count == 0)
