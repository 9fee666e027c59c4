from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping

from linkguard.core.errors import ConfigError
from linkguard.core.graph.models import ConsolidationGroup, DependencyGraph
from linkguard.core.policy.models import EffectivePolicy, LinkagePolicy, NodeOverride


def _apply_override(base: EffectivePolicy, ov: NodeOverride | None) -> EffectivePolicy:
    if ov is None:
        return base
    return EffectivePolicy(
        runtime=ov.runtime or base.runtime,
        configuration=ov.configuration or base.configuration,
    )


def resolve_policies(requested: LinkagePolicy, graph: DependencyGraph) -> Mapping[str, EffectivePolicy]:
    """Assign every node its effective policy for one build pass.

    Nodes inherit the requested policy unless the override table names them.
    A node whose effective policy differs from one of its dependencies is a
    contradiction unless its override explicitly reconciles that dependency.
    """
    unknown = sorted(n for n in requested.overrides if n not in graph.nodes)
    if unknown:
        raise ConfigError(
            f"overrides name undeclared nodes: {', '.join(unknown)}",
            details={"unknown": unknown},
        )

    for node_id, ov in requested.overrides.items():
        declared = set(graph.nodes[node_id].depends_on)
        stray = sorted(r for r in ov.reconciles if r != "*" and r not in declared)
        if stray:
            raise ConfigError(
                f"override of {node_id!r} reconciles nodes it does not depend on: {', '.join(stray)}",
                details={"node": node_id, "reconciles": stray},
            )

    base = requested.base
    resolved: Dict[str, EffectivePolicy] = {
        node_id: _apply_override(base, requested.overrides.get(node_id)) for node_id in graph.nodes
    }

    conflicts: List[Dict[str, Any]] = []
    for node_id in graph.topological_sort():
        node = graph.nodes[node_id]
        ov = requested.overrides.get(node_id)
        for dep in node.depends_on:
            if resolved[dep] == resolved[node_id]:
                continue
            if ov is not None and ov.reconciles_with(dep):
                continue
            conflicts.append(
                {
                    "node": node_id,
                    "node_label": resolved[node_id].label,
                    "dependency": dep,
                    "dependency_label": resolved[dep].label,
                }
            )

    if conflicts:
        first = conflicts[0]
        raise ConfigError(
            f"{first['node']!r} ({first['node_label']}) depends on {first['dependency']!r} "
            f"({first['dependency_label']}) without an explicit reconciliation",
            details={"conflicts": conflicts},
        )

    return MappingProxyType(resolved)


def validate_groups(
    groups: Iterable[ConsolidationGroup],
    graph: DependencyGraph,
    policies: Mapping[str, EffectivePolicy],
) -> None:
    seen_names = set()
    for group in groups:
        if group.name in seen_names:
            raise ConfigError(f"duplicate consolidation group: {group.name!r}")
        seen_names.add(group.name)

        if not group.members:
            raise ConfigError(f"consolidation group {group.name!r} has no members")

        unknown = [m for m in group.members if m not in graph.nodes]
        if unknown:
            raise ConfigError(
                f"consolidation group {group.name!r} names undeclared nodes: {', '.join(unknown)}",
                details={"group": group.name, "unknown": unknown},
            )

        labels = {m: policies[m].label for m in group.members}
        if len(set(labels.values())) > 1:
            raise ConfigError(
                f"consolidation group {group.name!r} mixes linkage policies",
                details={"group": group.name, "labels": labels},
            )
