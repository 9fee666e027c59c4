from __future__ import annotations

from collections import Counter
from typing import Dict

from prometheus_client import Counter as PromCounter

# Named counters (in-process snapshot)
_NAMED = Counter()

_PROM_NODE_BUILDS = PromCounter(
    "linkguard_node_builds_total",
    "Node builds by terminal outcome",
    ["outcome"],
)

_PROM_VERIFICATIONS = PromCounter(
    "linkguard_verifications_total",
    "Artifact verifications by result",
    ["result"],
)

_PROM_CONSOLIDATIONS = PromCounter(
    "linkguard_consolidations_total",
    "Consolidation group results",
    ["result"],
)


def reset_metrics() -> None:
    """
    Test helper: clears the named counters to avoid cross-test leakage.
    Prometheus counters are process-global and only ever increase.
    """
    _NAMED.clear()


def inc_named(name: str, value: int = 1) -> None:
    if not name:
        return
    _NAMED[name] += int(value)


def inc_node_build(outcome: str) -> None:
    _NAMED[f"node_{outcome.lower()}"] += 1
    _PROM_NODE_BUILDS.labels(outcome=outcome).inc()


def inc_verification(result: str) -> None:
    _NAMED[f"verification_{result}"] += 1
    _PROM_VERIFICATIONS.labels(result=result).inc()


def inc_consolidation(result: str) -> None:
    _NAMED[f"consolidation_{result}"] += 1
    _PROM_CONSOLIDATIONS.labels(result=result).inc()


def snapshot_named() -> Dict[str, int]:
    return dict(_NAMED)
