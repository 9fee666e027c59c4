from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from linkguard.api.workspace import within_workspace, workspace_root
from linkguard.core.build.orchestrator import new_run_id
from linkguard.core.build.report import RunReport
from linkguard.core.errors import ConfigError
from linkguard.core.graph.loader import BuildPlan, parse_description, plan_from_description
from linkguard.core.observability.metrics import inc_named
from linkguard.core.run import run_plan
from linkguard.core.settings import load_settings

router = APIRouter(prefix="/api/v1/builds", tags=["builds"])


class BuildRequest(BaseModel):
    description: Dict[str, Any]
    # relative node sources and group outputs resolve against this directory
    base_dir: Optional[str] = None
    retry: List[str] = Field(default_factory=list)
    state_dir: Optional[str] = None


def _check_plan_paths(plan: BuildPlan, root: Path) -> None:
    for node in plan.graph.nodes.values():
        within_workspace(node.source_dir, field=f"source of node {node.node_id!r}", root=root)
        for tmpl in node.artifacts:
            p = Path(tmpl)
            if p.is_absolute() or ".." in p.parts:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid artifact {tmpl!r} of node {node.node_id!r}: must stay inside the node source",
                )
    for group in plan.groups:
        within_workspace(group.output, field=f"output of group {group.name!r}", root=root)


@router.post("")
def start_build(req: BuildRequest):
    """Run one build pass synchronously and return the run report.

    Every path the pass touches must sit under the workspace root (400 otherwise).
    A ConfigError answers 400 with the report; every other outcome answers 200
    and carries its exit code in the body.
    """
    inc_named("api_builds")
    root = workspace_root()
    settings = load_settings()
    state_dir = within_workspace(req.state_dir or settings.state_dir, field="state_dir", root=root)
    settings = settings.with_overrides(state_dir=state_dir)
    base_dir = within_workspace(req.base_dir or root, field="base_dir", root=root)

    run_id = new_run_id()
    try:
        plan = plan_from_description(parse_description(req.description), base_dir=base_dir)
    except ConfigError as e:
        report = RunReport(run_id=run_id, config_error=e.to_dict())
        return JSONResponse(status_code=400, content=report.to_dict())
    _check_plan_paths(plan, root)

    report = run_plan(plan, settings=settings, retry=req.retry, run_id=run_id)
    body = report.to_dict()
    if report.config_error is not None:
        return JSONResponse(status_code=400, content=body)
    return body
