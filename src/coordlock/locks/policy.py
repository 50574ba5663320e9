"""What to do when a lock engine is killed."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class KillReason(Enum):
    REGULAR_RELEASE = "regular_release"
    LOCK_DELETED = "lock_deleted"
    LOCK_STOLEN = "lock_stolen"
    ACQUIRE_FAILED = "acquire_failed"
    COORDINATION_DISCONNECT = "coordination_disconnect"
    RESUME_FAILED = "resume_failed"


NOTIFY_RELEASED = "released"
NOTIFY_LOST = "lost"


@dataclass(frozen=True)
class KillAction:
    delete_node: bool
    notify: str


def kill_action(reason: KillReason, recoverable: bool) -> KillAction:
    """Map a kill reason to node deletion and monitor notification.

    A deleted or stolen node belongs to someone else (or nobody), so it is
    left alone. Durable locks keep their node across a disconnect so they
    can be recovered later.
    """
    if reason is KillReason.REGULAR_RELEASE:
        return KillAction(delete_node=True, notify=NOTIFY_RELEASED)
    if reason in (KillReason.LOCK_DELETED, KillReason.LOCK_STOLEN):
        return KillAction(delete_node=False, notify=NOTIFY_LOST)
    if reason is KillReason.COORDINATION_DISCONNECT:
        return KillAction(delete_node=not recoverable, notify=NOTIFY_LOST)
    # ACQUIRE_FAILED, RESUME_FAILED
    return KillAction(delete_node=True, notify=NOTIFY_LOST)
