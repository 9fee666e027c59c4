from __future__ import annotations

import os
import subprocess
import time
from typing import Dict, List, Optional

from linkguard.core.errors import ConfigError
from linkguard.core.graph.models import DependencyNode

from .base import BuildBackend, BuildOutcome

EXIT_TOOL_MISSING = 127
EXIT_TIMEOUT = 124


def render_command(node: DependencyNode) -> List[str]:
    values = node.placeholders()
    out: List[str] = []
    for part in node.command:
        try:
            out.append(part.format(**values))
        except (KeyError, IndexError) as e:
            raise ConfigError(
                f"command of node {node.node_id!r} uses an unknown placeholder in {part!r}",
                details={"placeholder": str(e), "allowed": sorted(values)},
            )
    return out


def build_env(node: DependencyNode) -> Dict[str, str]:
    env = dict(os.environ)
    pol = node.effective_policy
    env["LINKGUARD_NODE"] = node.node_id
    env["LINKGUARD_OUTPUT_DIR"] = str(node.output_path)
    if pol is not None:
        env["LINKGUARD_RUNTIME"] = pol.runtime.value
        env["LINKGUARD_CONFIGURATION"] = pol.configuration.value
        env["LINKGUARD_RUNTIME_FLAG"] = pol.runtime_flag
        env["LINKGUARD_RUNTIME_LABEL"] = pol.label
    return env


class SubprocessBackend(BuildBackend):
    name = "subprocess"

    def build(self, node: DependencyNode, *, timeout: Optional[float] = None) -> BuildOutcome:
        cmd = render_command(node)
        if not cmd:
            raise ConfigError(f"node {node.node_id!r} declares no build command")

        node.output_path.mkdir(parents=True, exist_ok=True)
        started = time.monotonic()
        try:
            r = subprocess.run(
                cmd,
                cwd=str(node.source_dir),
                env=build_env(node),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            return BuildOutcome(
                exit_code=EXIT_TOOL_MISSING,
                output=f"build tool not found: {e}",
                duration_seconds=time.monotonic() - started,
            )
        except subprocess.TimeoutExpired as e:
            partial = e.output if isinstance(e.output, str) else (e.output or b"").decode("utf-8", errors="replace")
            return BuildOutcome(
                exit_code=EXIT_TIMEOUT,
                output=f"{partial}\nbuild timed out after {timeout}s",
                duration_seconds=time.monotonic() - started,
            )

        return BuildOutcome(
            exit_code=r.returncode,
            output=r.stdout or "",
            duration_seconds=time.monotonic() - started,
        )
