from __future__ import annotations

import re
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from linkguard.core.errors import CircularDependencyError, ConfigError, UnknownDependencyError
from linkguard.core.policy.models import EffectivePolicy


# ids double as state file names
NODE_ID_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]{0,127}$")


class NodeStatus(str, Enum):
    UNBUILT = "Unbuilt"
    BUILDING = "Building"
    BUILT = "Built"
    STALE = "Stale"
    FAILED = "Failed"


@dataclass
class DependencyNode:
    node_id: str
    source_dir: Path
    depends_on: List[str] = field(default_factory=list)

    # external tool invocation; placeholders filled from the effective policy
    command: List[str] = field(default_factory=list)
    artifacts: List[str] = field(default_factory=list)
    output_dir: str = "out"

    status: NodeStatus = NodeStatus.UNBUILT
    effective_policy: Optional[EffectivePolicy] = None
    artifact_paths: List[Path] = field(default_factory=list)
    last_build_ts: Optional[float] = None
    last_build_policy: Optional[EffectivePolicy] = None

    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int = 0
    verification: List[Dict[str, Any]] = field(default_factory=list)
    blocked_by: List[str] = field(default_factory=list)

    @property
    def output_path(self) -> Path:
        return self.source_dir / self.output_dir

    def placeholders(self) -> Dict[str, str]:
        pol = self.effective_policy
        out = {
            "node": self.node_id,
            "output_dir": str(self.output_path),
        }
        if pol is not None:
            out.update(
                {
                    "runtime": pol.runtime.value,
                    "configuration": pol.configuration.value,
                    "runtime_flag": pol.runtime_flag,
                    "label": pol.label,
                }
            )
        return out

    def resolve_artifact_paths(self) -> List[Path]:
        values = self.placeholders()
        paths: List[Path] = []
        for tmpl in self.artifacts:
            try:
                rel = tmpl.format(**values)
            except (KeyError, IndexError) as e:
                raise ConfigError(
                    f"artifact template {tmpl!r} of node {self.node_id!r} uses an unknown placeholder",
                    details={"placeholder": str(e), "allowed": sorted(values)},
                )
            p = Path(rel)
            paths.append(p if p.is_absolute() else self.source_dir / p)
        return paths


@dataclass(frozen=True)
class ConsolidationGroup:
    name: str
    output: Path
    members: Tuple[str, ...]


class DependencyGraph:
    def __init__(self):
        self.nodes: Dict[str, DependencyNode] = {}
        # dependency -> direct dependents
        self.edges: Dict[str, List[str]] = defaultdict(list)

    def add_node(self, node: DependencyNode) -> None:
        if not NODE_ID_RE.match(node.node_id):
            raise ConfigError(
                f"invalid node id: {node.node_id!r}",
                details={"pattern": NODE_ID_RE.pattern},
            )
        if node.node_id in self.nodes:
            raise ConfigError(f"duplicate node id: {node.node_id!r}")
        self.nodes[node.node_id] = node
        for dep in node.depends_on:
            self.edges[dep].append(node.node_id)

    def get(self, node_id: str) -> DependencyNode:
        return self.nodes[node_id]

    def validate(self) -> None:
        for node in self.nodes.values():
            missing = [d for d in node.depends_on if d not in self.nodes]
            if missing:
                raise UnknownDependencyError(
                    f"node {node.node_id!r} depends on undeclared nodes: {', '.join(missing)}",
                    details={"node": node.node_id, "missing": missing},
                )
        self.topological_sort()

    def topological_sort(self) -> List[str]:
        in_degree: Dict[str, int] = {name: 0 for name in self.nodes}

        for name, node in self.nodes.items():
            in_degree[name] = len([d for d in node.depends_on if d in self.nodes])

        queue = deque(sorted(n for n, d in in_degree.items() if d == 0))
        order: List[str] = []

        while queue:
            current = queue.popleft()
            order.append(current)

            for neighbor in sorted(self.edges.get(current, [])):
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if len(order) != len(self.nodes):
            cycle = sorted(n for n in self.nodes if n not in order)
            raise CircularDependencyError(
                "circular dependency detected",
                details={"nodes": cycle},
            )

        return order

    def dependents_of(self, node_id: str) -> Set[str]:
        """All transitive dependents of node_id."""
        seen: Set[str] = set()
        queue = deque(self.edges.get(node_id, []))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self.edges.get(current, []))
        return seen
