from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from linkguard.core.observability.events import now_utc_iso
from linkguard.core.graph.models import DependencyNode, NodeStatus
from linkguard.core.policy.models import EffectivePolicy


def _nodes_dir(state_dir: Path) -> Path:
    d = state_dir / "nodes"
    d.mkdir(parents=True, exist_ok=True)
    return d


def _node_path(state_dir: Path, node_id: str) -> Path:
    return _nodes_dir(state_dir) / f"{node_id}.json"


@dataclass
class NodeRecord:
    node_id: str
    status: NodeStatus
    updated_ts: str
    artifact_paths: List[str] = field(default_factory=list)
    last_build_ts: Optional[float] = None
    last_build_policy: Optional[Dict[str, str]] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": self.status.value,
            "updated_ts": self.updated_ts,
            "artifact_paths": list(self.artifact_paths),
            "last_build_ts": self.last_build_ts,
            "last_build_policy": self.last_build_policy,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "NodeRecord":
        return NodeRecord(
            node_id=d["node_id"],
            status=NodeStatus(d["status"]),
            updated_ts=d.get("updated_ts") or now_utc_iso(),
            artifact_paths=list(d.get("artifact_paths") or []),
            last_build_ts=d.get("last_build_ts"),
            last_build_policy=d.get("last_build_policy"),
            error_kind=d.get("error_kind"),
            error_message=d.get("error_message"),
        )


class NodeStateRegistry:
    """File-backed node state between passes.

    Path: <state_dir>/nodes/{node_id}.json
    """

    def __init__(self, *, state_dir: Path):
        self.state_dir = state_dir

    def get(self, node_id: str) -> Optional[NodeRecord]:
        p = _node_path(self.state_dir, node_id)
        if not p.exists():
            return None
        try:
            obj = json.loads(p.read_text(encoding="utf-8"))
            return NodeRecord.from_dict(obj)
        except (ValueError, KeyError):
            # unreadable state is treated as never built
            return None

    def upsert(self, rec: NodeRecord) -> None:
        p = _node_path(self.state_dir, rec.node_id)
        tmp = p.with_name(p.name + ".tmp")
        tmp.write_text(json.dumps(rec.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, p)

    def save_node(self, node: DependencyNode, *, status: Optional[NodeStatus] = None) -> NodeRecord:
        rec = NodeRecord(
            node_id=node.node_id,
            status=status or node.status,
            updated_ts=now_utc_iso(),
            artifact_paths=[str(p) for p in node.artifact_paths],
            last_build_ts=node.last_build_ts,
            last_build_policy=node.last_build_policy.snapshot() if node.last_build_policy else None,
            error_kind=node.error_kind,
            error_message=node.error_message,
        )
        self.upsert(rec)
        return rec

    def hydrate(self, node: DependencyNode) -> Optional[NodeRecord]:
        """Carry a previous pass's terminal state into a freshly constructed node."""
        rec = self.get(node.node_id)
        if rec is None:
            return None
        node.last_build_ts = rec.last_build_ts
        node.last_build_policy = EffectivePolicy.from_snapshot(rec.last_build_policy)
        node.artifact_paths = [Path(p) for p in rec.artifact_paths]
        if rec.status == NodeStatus.BUILT and node.last_build_policy is not None:
            node.status = NodeStatus.BUILT
        elif rec.status == NodeStatus.FAILED:
            node.status = NodeStatus.FAILED
            node.error_kind = rec.error_kind
            node.error_message = rec.error_message
        return rec

    def clear(self, node_id: str) -> None:
        p = _node_path(self.state_dir, node_id)
        if p.exists():
            p.unlink()
