from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from linkguard.core.graph.models import DependencyNode


@dataclass(frozen=True)
class BuildOutcome:
    exit_code: int
    output: str = ""
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class BuildBackend(ABC):
    name: str

    @abstractmethod
    def build(self, node: DependencyNode, *, timeout: Optional[float] = None) -> BuildOutcome:
        """Run the external build tool for one node.

        The node carries its effective policy; the backend only reports the
        exit code and captured output. Artifacts are located afterwards from
        the node's artifact templates.
        """
