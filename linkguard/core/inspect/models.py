from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Tuple


class ArtifactKind(str, Enum):
    ARCHIVE = "archive"
    OBJECT = "object"
    SHARED_OBJECT = "shared_object"


@dataclass(frozen=True)
class MemberInfo:
    name: str
    fmt: str  # "coff" | "coff-bigobj" | "coff-import" | "elf" | "elf-shared"
    labels: Tuple[str, ...] = ()
    defined_symbols: FrozenSet[str] = frozenset()
    strong_symbols: FrozenSet[str] = frozenset()
    directives: Tuple[Tuple[str, str], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "format": self.fmt,
            "labels": list(self.labels),
            "defined_symbols": len(self.defined_symbols),
            "strong_symbols": len(self.strong_symbols),
        }


@dataclass(frozen=True)
class Artifact:
    path: Path
    kind: ArtifactKind
    directives: Tuple[str, ...]
    homogeneous: bool
    members: Tuple[MemberInfo, ...] = field(default_factory=tuple)

    @property
    def mixed(self) -> bool:
        return not self.homogeneous

    @property
    def undeclared_members(self) -> List[str]:
        return [m.name for m in self.members if not m.labels]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "kind": self.kind.value,
            "directives": list(self.directives),
            "homogeneous": self.homogeneous,
            "member_count": len(self.members),
            "undeclared_members": self.undeclared_members,
            "members": [m.to_dict() for m in self.members],
        }
