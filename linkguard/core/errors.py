from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class LinkguardError(Exception):
    kind = "Error"
    remediation: Optional[str] = None

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            out["details"] = self.details
        if self.remediation:
            out["remediation"] = self.remediation
        return out


class ConfigError(LinkguardError):
    """Policy, override or graph contradiction. Fatal before any build starts."""

    kind = "ConfigError"
    remediation = "Fix the build description: reconcile the override or correct the dependency edges."


class CircularDependencyError(ConfigError):
    kind = "CircularDependency"


class UnknownDependencyError(ConfigError):
    kind = "UnknownDependency"


class BuildFailed(LinkguardError):
    kind = "BuildFailed"
    remediation = "Inspect the node build log; dependents were not scheduled."

    def __init__(self, node_id: str, exit_code: int, *, output_tail: str = ""):
        super().__init__(
            f"build of {node_id!r} exited with code {exit_code}",
            details={"exit_code": exit_code, "output_tail": output_tail} if output_tail else {"exit_code": exit_code},
        )
        self.node_id = node_id
        self.exit_code = exit_code


class UnreadableArtifact(LinkguardError):
    kind = "UnreadableArtifact"
    remediation = "The build produced a missing, corrupt or unsupported artifact; check the artifact paths."

    def __init__(self, path: str, reason: str):
        super().__init__(f"cannot read artifact {path}: {reason}", details={"path": path, "reason": reason})
        self.path = path
        self.reason = reason


class VerificationFailed(LinkguardError):
    kind = "VerificationFailed"
    remediation = "An object in the artifact was compiled against a different runtime; check per-target runtime flags."

    def __init__(self, node_id: str, reports: Sequence[Any], *, message: Optional[str] = None):
        super().__init__(
            message or f"artifacts of {node_id!r} do not match the linkage policy",
            details={"reports": [r.to_dict() for r in reports]},
        )
        self.node_id = node_id
        self.reports = list(reports)


class ExceededRetries(VerificationFailed):
    kind = "ExceededRetries"
    remediation = (
        "Clean rebuilds kept producing mismatched directives; the build scripts ignore the runtime flag "
        "or a prebuilt object is mixed in."
    )


class ConsolidationError(LinkguardError):
    kind = "ConsolidationError"
    remediation = "Every group member must be built and verified against one label before merging."

    def __init__(self, group: str, reason: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"cannot consolidate group {group!r}: {reason}", details=details)
        self.group = group
        self.reason = reason


class DuplicateSymbolError(ConsolidationError):
    kind = "DuplicateSymbolError"
    remediation = "Reorder or exclude one of the conflicting members; duplicates are never resolved automatically."

    def __init__(self, group: str, conflicts: Dict[str, List[str]]):
        members = sorted({m for owners in conflicts.values() for m in owners})
        super().__init__(
            group,
            f"strong symbols defined by more than one member ({', '.join(members)})",
            details={"conflicts": {sym: list(owners) for sym, owners in sorted(conflicts.items())}},
        )
        self.conflicts = conflicts
        self.members = members


class IllegalTransition(ValueError):
    pass
