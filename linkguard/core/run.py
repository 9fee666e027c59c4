from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from linkguard.core.build.backends import BACKENDS, BuildBackend
from linkguard.core.build.orchestrator import Orchestrator, new_run_id
from linkguard.core.build.registry import NodeStateRegistry
from linkguard.core.build.report import RunReport
from linkguard.core.errors import ConfigError
from linkguard.core.graph.loader import BuildPlan, load_plan, parse_description, plan_from_description
from linkguard.core.settings import Settings, load_settings

logger = logging.getLogger("linkguard.run")


def settings_for_plan(
    plan: BuildPlan,
    settings: Settings,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Settings:
    """Description values apply over settings; explicit overrides (CLI flags) win over both."""
    desc = plan.description
    s = settings.with_overrides(
        workers=desc.workers,
        max_verification_retries=desc.max_verification_retries,
    )
    return s.with_overrides(**dict(overrides or {}))


def _backend(name: str) -> BuildBackend:
    backend = BACKENDS.get(name)
    if backend is None:
        raise ConfigError(f"unsupported build backend: {name!r}", details={"allowed": sorted(BACKENDS)})
    return backend


def run_plan(
    plan: BuildPlan,
    *,
    settings: Optional[Settings] = None,
    retry: Iterable[str] = (),
    backend: Optional[BuildBackend] = None,
    run_id: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> RunReport:
    """Execute one build pass. A ConfigError ends the pass before any build and is
    carried in the report rather than raised."""
    run_id = run_id or new_run_id()
    base = settings or load_settings()
    try:
        s = settings_for_plan(plan, base, overrides)
        orch = Orchestrator(
            plan.graph,
            plan.policy,
            backend=backend or _backend(plan.description.backend),
            registry=NodeStateRegistry(state_dir=s.state_dir),
            settings=s,
            groups=plan.groups,
            run_id=run_id,
        )
        report = orch.build_all(retry=retry)
    except ConfigError as e:
        logger.error("run %s aborted: %s", run_id, e.message)
        return RunReport(run_id=run_id, config_error=e.to_dict())

    logger.info("run %s finished: exit_code=%d", run_id, int(report.exit_code))
    return report


def run_build(
    description: Union[str, Path, Mapping[str, Any]],
    *,
    base_dir: Optional[Path] = None,
    settings: Optional[Settings] = None,
    retry: Iterable[str] = (),
    backend: Optional[BuildBackend] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> RunReport:
    """Load a description (file path or mapping) and run it."""
    run_id = new_run_id()
    try:
        if isinstance(description, Mapping):
            plan = plan_from_description(parse_description(description), base_dir=base_dir or Path.cwd())
        else:
            plan = load_plan(description)
    except ConfigError as e:
        logger.error("run %s aborted: %s", run_id, e.message)
        return RunReport(run_id=run_id, config_error=e.to_dict())

    return run_plan(plan, settings=settings, retry=retry, backend=backend, run_id=run_id, overrides=overrides)
