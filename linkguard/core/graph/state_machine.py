# linkguard/core/graph/state_machine.py
from __future__ import annotations

from typing import Dict, Set, Tuple

from linkguard.core.errors import IllegalTransition

from .models import NodeStatus


_ALLOWED: Set[Tuple[NodeStatus, NodeStatus]] = {
    (NodeStatus.UNBUILT, NodeStatus.BUILDING),
    (NodeStatus.BUILDING, NodeStatus.BUILT),
    (NodeStatus.BUILDING, NodeStatus.FAILED),

    # drift or failed re-verification of a previous build
    (NodeStatus.BUILT, NodeStatus.STALE),
    (NodeStatus.STALE, NodeStatus.BUILDING),
}

# only reachable through an explicit operator retry
_RETRY: Set[Tuple[NodeStatus, NodeStatus]] = {
    (NodeStatus.FAILED, NodeStatus.BUILDING),
}

_TERMINAL: Set[NodeStatus] = {
    NodeStatus.BUILT,
    NodeStatus.FAILED,
}


def is_terminal(state: NodeStatus) -> bool:
    return state in _TERMINAL


def can_transition(src: NodeStatus, dst: NodeStatus, *, operator_retry: bool = False) -> bool:
    if src == dst:
        return True
    if (src, dst) in _ALLOWED:
        return True
    return operator_retry and (src, dst) in _RETRY


def ensure_transition(src: NodeStatus, dst: NodeStatus, *, operator_retry: bool = False) -> None:
    if not can_transition(src, dst, operator_retry=operator_retry):
        raise IllegalTransition(f"Illegal transition: {src.value} -> {dst.value}")


def allowed_next(src: NodeStatus) -> Dict[str, bool]:
    out: Dict[str, bool] = {}
    for a, b in _ALLOWED:
        if a == src:
            out[b.value] = True
    return out
