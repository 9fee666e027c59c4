from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

from linkguard.core.inspect.models import Artifact
from linkguard.core.policy.models import EffectivePolicy


@dataclass(frozen=True)
class VerificationReport:
    artifact_path: str
    expected_label: str
    found: Tuple[str, ...]
    passed: bool
    mixed: bool
    # "ok" | "mixed_directives" | "label_mismatch" | "no_directives"
    reason: str
    mismatched: Tuple[str, ...] = ()
    offending_members: Tuple[Tuple[str, Tuple[str, ...]], ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifact_path": self.artifact_path,
            "expected_label": self.expected_label,
            "found": list(self.found),
            "passed": self.passed,
            "mixed": self.mixed,
            "reason": self.reason,
            "mismatched": list(self.mismatched),
            "offending_members": [{"member": m, "labels": list(ls)} for m, ls in self.offending_members],
        }


def verify_artifact(artifact: Artifact, policy: EffectivePolicy) -> VerificationReport:
    expected = policy.label
    found = tuple(artifact.directives)

    offending = tuple(
        (m.name, tuple(m.labels))
        for m in artifact.members
        if m.labels and tuple(m.labels) != (expected,)
    )
    mismatched = tuple(label for label in found if label != expected)

    if not artifact.homogeneous:
        # mixed runtimes are unsafe whatever the policy says
        reason = "mixed_directives"
    elif not found:
        reason = "no_directives"
    elif found != (expected,):
        reason = "label_mismatch"
    else:
        reason = "ok"

    return VerificationReport(
        artifact_path=str(artifact.path),
        expected_label=expected,
        found=found,
        passed=reason == "ok",
        mixed=not artifact.homogeneous,
        reason=reason,
        mismatched=mismatched,
        offending_members=offending,
    )
