from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional

from linkguard.core.errors import (
    BuildFailed,
    ConfigError,
    ConsolidationError,
    DuplicateSymbolError,
    ExceededRetries,
    UnreadableArtifact,
    VerificationFailed,
)
from linkguard.core.graph.models import DependencyNode, NodeStatus


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    BUILD_FAILED = 3
    VERIFICATION_FAILED = 4
    CONSOLIDATION_FAILED = 5


_KIND_EXIT: Dict[str, ExitCode] = {
    ConfigError.kind: ExitCode.CONFIG_ERROR,
    "CircularDependency": ExitCode.CONFIG_ERROR,
    "UnknownDependency": ExitCode.CONFIG_ERROR,
    BuildFailed.kind: ExitCode.BUILD_FAILED,
    UnreadableArtifact.kind: ExitCode.BUILD_FAILED,
    "PreviouslyFailed": ExitCode.BUILD_FAILED,
    VerificationFailed.kind: ExitCode.VERIFICATION_FAILED,
    ExceededRetries.kind: ExitCode.VERIFICATION_FAILED,
    ConsolidationError.kind: ExitCode.CONSOLIDATION_FAILED,
    DuplicateSymbolError.kind: ExitCode.CONSOLIDATION_FAILED,
}

REMEDIATION: Dict[str, str] = {
    BuildFailed.kind: BuildFailed.remediation,
    UnreadableArtifact.kind: UnreadableArtifact.remediation,
    VerificationFailed.kind: VerificationFailed.remediation,
    ExceededRetries.kind: ExceededRetries.remediation,
    ConsolidationError.kind: ConsolidationError.remediation,
    DuplicateSymbolError.kind: DuplicateSymbolError.remediation,
    ConfigError.kind: ConfigError.remediation,
    "PreviouslyFailed": "Failed in an earlier pass; request an explicit retry for this node.",
    "DependencyFailed": "Fix the failed dependency; this node was not scheduled.",
}


def exit_code_for(kind: Optional[str]) -> ExitCode:
    if not kind:
        return ExitCode.OK
    return _KIND_EXIT.get(kind, ExitCode.BUILD_FAILED)


@dataclass
class NodeReport:
    node_id: str
    status: str
    label: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    remediation: Optional[str] = None
    attempts: int = 0
    artifacts: List[str] = field(default_factory=list)
    verification: List[Dict[str, Any]] = field(default_factory=list)
    blocked_by: List[str] = field(default_factory=list)

    @staticmethod
    def from_node(node: DependencyNode) -> "NodeReport":
        kind = node.error_kind
        if kind is None and node.blocked_by:
            kind = "DependencyFailed"
        return NodeReport(
            node_id=node.node_id,
            status=node.status.value,
            label=node.effective_policy.label if node.effective_policy else None,
            error_kind=kind,
            message=node.error_message,
            remediation=REMEDIATION.get(kind) if kind else None,
            attempts=node.attempts,
            artifacts=[str(p) for p in node.artifact_paths],
            verification=list(node.verification),
            blocked_by=list(node.blocked_by),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": self.status,
            "label": self.label,
            "error_kind": self.error_kind,
            "message": self.message,
            "remediation": self.remediation,
            "attempts": self.attempts,
            "artifacts": self.artifacts,
            "verification": self.verification,
            "blocked_by": self.blocked_by,
        }


@dataclass
class GroupReport:
    name: str
    output: str
    # "Consolidated" | "Failed" | "Skipped"
    status: str
    error_kind: Optional[str] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "output": self.output,
            "status": self.status,
            "error_kind": self.error_kind,
            "message": self.message,
            "remediation": REMEDIATION.get(self.error_kind) if self.error_kind else None,
            "details": self.details,
        }


@dataclass
class RunReport:
    run_id: str
    nodes: Dict[str, NodeReport] = field(default_factory=dict)
    groups: Dict[str, GroupReport] = field(default_factory=dict)
    config_error: Optional[Dict[str, Any]] = None

    @property
    def exit_code(self) -> ExitCode:
        if self.config_error is not None:
            return ExitCode.CONFIG_ERROR
        codes = [exit_code_for(n.error_kind) for n in self.nodes.values() if n.status == NodeStatus.FAILED.value]
        codes += [exit_code_for(g.error_kind) for g in self.groups.values() if g.status == "Failed"]
        codes = [c for c in codes if c != ExitCode.OK]
        # earliest pipeline stage wins: config, build, verification, consolidation
        return min(codes) if codes else ExitCode.OK

    @property
    def escalated(self) -> bool:
        if self.config_error is not None:
            return True
        return bool(self.nodes) and not any(n.status == NodeStatus.BUILT.value for n in self.nodes.values())

    @property
    def ok(self) -> bool:
        return self.exit_code == ExitCode.OK

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "kind": "linkguard_run_report",
            "run_id": self.run_id,
            "ok": self.ok,
            "exit_code": int(self.exit_code),
            "escalated": self.escalated,
            "nodes": {k: v.to_dict() for k, v in sorted(self.nodes.items())},
            "groups": {k: v.to_dict() for k, v in sorted(self.groups.items())},
        }
        if self.config_error is not None:
            out["config_error"] = self.config_error
        return out
