from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from linkguard.core.graph.models import DependencyNode
from linkguard.core.policy.models import EffectivePolicy


class Staleness(str, Enum):
    STALE = "Stale"
    FRESH_ENOUGH = "FreshEnough"


def staleness_reasons(
    node: DependencyNode,
    current_policy: EffectivePolicy,
    last_build_policy: Optional[EffectivePolicy],
    source_ts: Optional[float],
    last_build_ts: Optional[float],
) -> List[str]:
    reasons: List[str] = []
    if last_build_policy is None or last_build_ts is None:
        reasons.append("never_built")
        return reasons
    if current_policy != last_build_policy:
        reasons.append("policy_drift")
    if source_ts is not None and source_ts > last_build_ts:
        reasons.append("source_changed")
    return reasons


def evaluate_staleness(
    node: DependencyNode,
    current_policy: EffectivePolicy,
    last_build_policy: Optional[EffectivePolicy],
    source_ts: Optional[float],
    last_build_ts: Optional[float],
) -> Staleness:
    if staleness_reasons(node, current_policy, last_build_policy, source_ts, last_build_ts):
        return Staleness.STALE
    return Staleness.FRESH_ENOUGH


def source_timestamp(source_dir: Path, *, exclude: Iterable[Path] = ()) -> Optional[float]:
    """Newest mtime of any file under source_dir, skipping excluded trees."""
    if not source_dir.exists():
        return None

    skip = {p.resolve() for p in exclude}
    newest: Optional[float] = None
    for root, dirs, files in os.walk(source_dir):
        root_path = Path(root).resolve()
        dirs[:] = [d for d in dirs if (root_path / d) not in skip]
        for f in files:
            try:
                mtime = (root_path / f).stat().st_mtime
            except OSError:
                continue
            if newest is None or mtime > newest:
                newest = mtime
    return newest
