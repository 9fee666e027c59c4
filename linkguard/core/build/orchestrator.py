from __future__ import annotations

import logging
import shutil
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from linkguard.core.build.backends import BuildBackend, BuildOutcome, SubprocessBackend
from linkguard.core.build.registry import NodeStateRegistry
from linkguard.core.build.report import GroupReport, NodeReport, RunReport
from linkguard.core.consolidate.consolidator import consolidate
from linkguard.core.errors import (
    BuildFailed,
    ConfigError,
    ConsolidationError,
    ExceededRetries,
    LinkguardError,
    UnreadableArtifact,
    VerificationFailed,
)
from linkguard.core.graph.models import ConsolidationGroup, DependencyGraph, DependencyNode, NodeStatus
from linkguard.core.graph.state_machine import ensure_transition
from linkguard.core.inspect.inspector import inspect_artifact
from linkguard.core.inspect.models import Artifact
from linkguard.core.observability.events import BuildEvent, EventType, emit_event, now_utc_iso
from linkguard.core.observability.metrics import inc_consolidation, inc_node_build, inc_verification
from linkguard.core.policy import EffectivePolicy, LinkagePolicy, resolve_policies, validate_groups
from linkguard.core.settings import Settings, load_settings
from linkguard.core.staleness import source_timestamp, staleness_reasons
from linkguard.core.verify.verifier import VerificationReport, verify_artifact

logger = logging.getLogger("linkguard.build")

_OUTPUT_TAIL_CHARS = 2000


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


class Orchestrator:
    """Builds every node of a graph under one linkage policy.

    Nodes run on a bounded thread pool in dependency order. A node is
    submitted once all of its dependencies are Built in this pass; a Failed
    node blocks its transitive dependents while independent subtrees keep
    going. Groups are consolidated after the pool drains.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        policy: LinkagePolicy,
        *,
        backend: Optional[BuildBackend] = None,
        registry: Optional[NodeStateRegistry] = None,
        settings: Optional[Settings] = None,
        groups: Sequence[ConsolidationGroup] = (),
        run_id: Optional[str] = None,
    ):
        self.graph = graph
        self.policy = policy
        self.settings = settings or load_settings()
        self.backend = backend or SubprocessBackend()
        self.registry = registry or NodeStateRegistry(state_dir=self.settings.state_dir)
        self.groups = list(groups)
        self.run_id = run_id or new_run_id()

        self._retry: Set[str] = set()
        self._artifacts: Dict[str, List[Artifact]] = {}
        self._reports: Dict[str, List[VerificationReport]] = {}
        self._group_reports: Dict[str, GroupReport] = {}
        self._prepared = False

    # ---- paths ----

    @property
    def state_dir(self) -> Path:
        return self.settings.state_dir

    @property
    def events_path(self) -> Path:
        return self.state_dir / "events.log"

    def log_path(self, node_id: str) -> Path:
        return self.state_dir / "logs" / f"{node_id}.log"

    # ---- events ----

    def _emit(
        self,
        event_type: EventType,
        *,
        node_id: Optional[str] = None,
        group: Optional[str] = None,
        payload: Optional[Dict] = None,
    ) -> None:
        emit_event(
            BuildEvent.mk(event_type, self.run_id, node_id=node_id, group=group, payload=payload),
            self.events_path,
        )

    # ---- preparation ----

    def prepare(self) -> Mapping[str, EffectivePolicy]:
        """Validate the graph, resolve every node's policy and load carried-over state.

        Raises ConfigError before anything is built.
        """
        self.graph.validate()
        policies = resolve_policies(self.policy, self.graph)
        validate_groups(self.groups, self.graph, policies)

        for node_id, node in self.graph.nodes.items():
            node.effective_policy = policies[node_id]
            # surfaces unknown placeholders as a ConfigError up front
            node.resolve_artifact_paths()
            if not self._prepared:
                self.registry.hydrate(node)

        self._prepared = True
        return policies

    # ---- single node operations ----

    def _begin(self, node: DependencyNode, operator_retry: bool) -> None:
        ensure_transition(node.status, NodeStatus.BUILDING, operator_retry=operator_retry)
        node.status = NodeStatus.BUILDING
        node.attempts += 1
        node.error_kind = None
        node.error_message = None

        self._emit(
            "NodeBuildStarted",
            node_id=node.node_id,
            payload={"attempt": node.attempts, "label": node.effective_policy.label if node.effective_policy else None},
        )

    def _invoke(self, node: DependencyNode) -> BuildOutcome:
        outcome = self.backend.build(node, timeout=self.settings.build_timeout_seconds)
        self._record_output(node, outcome)

        if not outcome.ok:
            raise BuildFailed(node.node_id, outcome.exit_code, output_tail=outcome.output[-_OUTPUT_TAIL_CHARS:])

        node.artifact_paths = node.resolve_artifact_paths()
        return outcome

    def build(self, node: DependencyNode, *, operator_retry: bool = False) -> BuildOutcome:
        """Run the external build for one node; raises BuildFailed on non-zero exit."""
        self._begin(node, operator_retry)
        return self._invoke(node)

    def clean_and_rebuild(self, node: DependencyNode, *, operator_retry: bool = False) -> BuildOutcome:
        """Remove the node's output directory and declared artifacts, then build it again."""
        self._begin(node, operator_retry)
        out = node.output_path
        if out.exists() and out.resolve() != node.source_dir.resolve():
            shutil.rmtree(out)
        for p in node.resolve_artifact_paths():
            if p.is_file():
                p.unlink()
        node.artifact_paths = []
        logger.info("[%s] cleaned %s", node.node_id, out)
        return self._invoke(node)

    def _record_output(self, node: DependencyNode, outcome: BuildOutcome) -> None:
        text = outcome.output.rstrip()
        logger.info(
            "[%s] attempt=%d exit=%d duration=%.2fs\n%s",
            node.node_id, node.attempts, outcome.exit_code, outcome.duration_seconds, text,
        )
        p = self.log_path(node.node_id)
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("a", encoding="utf-8") as f:
            f.write(
                f"=== [{node.node_id}] run={self.run_id} attempt={node.attempts} "
                f"ts={now_utc_iso()} exit={outcome.exit_code} ===\n"
            )
            if text:
                f.write(text + "\n")

    # ---- inspection / verification ----

    def _policy(self, node: DependencyNode) -> EffectivePolicy:
        if node.effective_policy is None:
            raise ConfigError(f"node {node.node_id!r} has no resolved policy; call prepare() first")
        return node.effective_policy

    def _inspect_and_verify(self, node: DependencyNode) -> List[VerificationReport]:
        policy = self._policy(node)
        artifacts = [inspect_artifact(p) for p in node.artifact_paths]
        reports = [verify_artifact(a, policy) for a in artifacts]
        for r in reports:
            inc_verification("passed" if r.passed else "failed")

        self._artifacts[node.node_id] = artifacts
        self._reports[node.node_id] = reports
        node.verification = [r.to_dict() for r in reports]
        return reports

    def _verify_with_retries(self, node: DependencyNode) -> List[VerificationReport]:
        limit = self.settings.max_verification_retries
        retries = 0
        while True:
            reports = self._inspect_and_verify(node)
            if reports and all(r.passed for r in reports):
                return reports

            if not reports:
                failure = VerificationFailed(node.node_id, reports, message=f"node {node.node_id!r} declares no artifacts")
            else:
                failure = VerificationFailed(node.node_id, [r for r in reports if not r.passed])
            self._emit("VerificationFailed", node_id=node.node_id, payload=failure.details)
            logger.warning("[%s] verification failed (retry %d/%d): %s", node.node_id, retries, limit, failure.message)

            if retries >= limit:
                if retries == 0:
                    raise failure
                raise ExceededRetries(
                    node.node_id,
                    failure.reports,
                    message=f"artifacts of {node.node_id!r} still mismatch after {retries} clean rebuild(s)",
                )
            retries += 1
            self.clean_and_rebuild(node)

    # ---- per node lifecycle ----

    def _stale_reasons(self, node: DependencyNode) -> List[str]:
        policy = self._policy(node)
        src_ts = source_timestamp(node.source_dir, exclude=(node.output_path, self.state_dir))
        reasons = staleness_reasons(node, policy, node.last_build_policy, src_ts, node.last_build_ts)
        if not node.artifact_paths or any(not p.is_file() for p in node.artifact_paths):
            reasons.append("artifacts_missing")
        return reasons

    def _mark_stale(self, node: DependencyNode, reasons: List[str]) -> None:
        ensure_transition(node.status, NodeStatus.STALE)
        node.status = NodeStatus.STALE
        self._emit("NodeStale", node_id=node.node_id, payload={"reasons": reasons})
        logger.info("[%s] stale: %s", node.node_id, ", ".join(reasons))

    def _process(self, node: DependencyNode) -> None:
        if node.status == NodeStatus.BUILT:
            reasons = self._stale_reasons(node)
            if not reasons:
                try:
                    reports = self._inspect_and_verify(node)
                except UnreadableArtifact as e:
                    reports = []
                    reasons = ["artifact_unreadable"]
                    logger.warning("[%s] %s", node.node_id, e.message)
                if reports and all(r.passed for r in reports):
                    self._emit("NodeBuilt", node_id=node.node_id, payload={"reused": True})
                    inc_node_build("Reused")
                    return
                if not reasons:
                    reasons = ["verification_failed"]
            self._mark_stale(node, reasons)
            self.clean_and_rebuild(node)
        else:
            self.build(node, operator_retry=node.node_id in self._retry)

        self._verify_with_retries(node)
        self._finish_built(node)

    def _finish_built(self, node: DependencyNode) -> None:
        ensure_transition(node.status, NodeStatus.BUILT)
        node.last_build_ts = time.time()
        node.last_build_policy = node.effective_policy
        node.error_kind = None
        node.error_message = None
        # persisted first: a node is only Built once its record is on disk
        self.registry.save_node(node, status=NodeStatus.BUILT)
        node.status = NodeStatus.BUILT

        self._emit(
            "NodeBuilt",
            node_id=node.node_id,
            payload={"attempts": node.attempts, "artifacts": [str(p) for p in node.artifact_paths]},
        )
        inc_node_build("Built")

    def _fail(self, node: DependencyNode, err: LinkguardError) -> None:
        ensure_transition(node.status, NodeStatus.FAILED)
        node.status = NodeStatus.FAILED
        node.error_kind = err.kind
        node.error_message = err.message
        try:
            self.registry.save_node(node)
        except OSError as e:
            logger.error("[%s] cannot persist failure: %s", node.node_id, e)

        self._emit("NodeFailed", node_id=node.node_id, payload=err.to_dict())
        inc_node_build("Failed")
        logger.error("[%s] %s: %s", node.node_id, err.kind, err.message)

    def _run_node(self, node: DependencyNode) -> None:
        try:
            self._process(node)
        except LinkguardError as e:
            self._contain(node, e)
        except OSError as e:
            self._contain(node, BuildFailed(node.node_id, -1, output_tail=str(e)))
        except Exception as e:
            logger.exception("[%s] unexpected error", node.node_id)
            self._contain(node, BuildFailed(node.node_id, -1, output_tail=f"{type(e).__name__}: {e}"))

    def _contain(self, node: DependencyNode, err: LinkguardError) -> None:
        if node.status == NodeStatus.BUILT:
            # record already persisted; only the bookkeeping after it failed
            logger.error("[%s] after build: %s", node.node_id, err.message)
            return
        self._fail(node, err)

    # ---- scheduling ----

    def _block_dependents(self, failed_id: str, waiting: Set[str], blocked: Set[str]) -> None:
        for dep_id in sorted(self.graph.dependents_of(failed_id)):
            if dep_id not in waiting and dep_id not in blocked:
                continue
            node = self.graph.get(dep_id)
            if failed_id not in node.blocked_by:
                node.blocked_by.append(failed_id)
                node.blocked_by.sort()
            if dep_id in waiting:
                waiting.discard(dep_id)
                blocked.add(dep_id)
                inc_node_build("Blocked")
            self._emit("NodeBlocked", node_id=dep_id, payload={"blocked_by": list(node.blocked_by)})
            logger.warning("[%s] not scheduled: dependency %s failed", dep_id, failed_id)

    def build_all(self, retry: Iterable[str] = ()) -> RunReport:
        self._retry = set(retry)
        unknown = sorted(self._retry - set(self.graph.nodes))
        if unknown:
            raise ConfigError(f"retry names unknown nodes: {', '.join(unknown)}", details={"nodes": unknown})

        self.prepare()
        order = self.graph.topological_sort()
        self._emit("RunStarted", payload={"policy": self.policy.to_dict(), "nodes": order, "retry": sorted(self._retry)})

        waiting: List[str] = []
        blocked: Set[str] = set()
        built: Set[str] = set()
        failed_first: List[str] = []
        for node_id in order:
            node = self.graph.get(node_id)
            node.blocked_by = []
            if node.status == NodeStatus.FAILED and node_id not in self._retry:
                if not node.error_kind:
                    node.error_kind = "PreviouslyFailed"
                failed_first.append(node_id)
            else:
                waiting.append(node_id)

        waiting_set = set(waiting)
        for node_id in failed_first:
            logger.info("[%s] kept Failed from a previous pass", node_id)
            self._block_dependents(node_id, waiting_set, blocked)

        with ThreadPoolExecutor(max_workers=max(1, self.settings.workers), thread_name_prefix="linkguard") as pool:
            in_flight: Dict[Future, str] = {}
            while waiting_set or in_flight:
                for node_id in [n for n in waiting if n in waiting_set]:
                    node = self.graph.get(node_id)
                    if all(d in built for d in node.depends_on):
                        waiting_set.discard(node_id)
                        in_flight[pool.submit(self._run_node, node)] = node_id

                if not in_flight:
                    break

                finished, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for fut in finished:
                    node_id = in_flight.pop(fut)
                    fut.result()
                    if self.graph.get(node_id).status == NodeStatus.BUILT:
                        built.add(node_id)
                    else:
                        self._block_dependents(node_id, waiting_set, blocked)

        for group in self.groups:
            self._consolidate_group(group, built)

        report = self.report()
        self._emit(
            "RunCompleted",
            payload={"exit_code": int(report.exit_code), "escalated": report.escalated},
        )
        return report

    # ---- consolidation ----

    def _consolidate_group(self, group: ConsolidationGroup, built: Set[str]) -> GroupReport:
        missing = [m for m in group.members if m not in built]
        if missing:
            gr = GroupReport(
                name=group.name,
                output=str(group.output),
                status="Skipped",
                message=f"members not built in this pass: {', '.join(missing)}",
                details={"missing": missing},
            )
            inc_consolidation("skipped")
            self._group_reports[group.name] = gr
            return gr

        try:
            out = consolidate(
                group,
                {m: self._artifacts[m] for m in group.members},
                {m: self._reports[m] for m in group.members},
            )
        except ConsolidationError as e:
            gr = GroupReport(
                name=group.name,
                output=str(group.output),
                status="Failed",
                error_kind=e.kind,
                message=e.message,
                details=e.details,
            )
            self._emit("GroupFailed", group=group.name, payload=e.to_dict())
            inc_consolidation("failed")
            logger.error("group %s: %s", group.name, e.message)
        else:
            gr = GroupReport(name=group.name, output=str(out), status="Consolidated")
            self._emit("GroupConsolidated", group=group.name, payload={"output": str(out), "members": list(group.members)})
            inc_consolidation("ok")

        self._group_reports[group.name] = gr
        return gr

    # ---- reporting ----

    def report(self) -> RunReport:
        return RunReport(
            run_id=self.run_id,
            nodes={nid: NodeReport.from_node(n) for nid, n in self.graph.nodes.items()},
            groups=dict(self._group_reports),
        )
