from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from linkguard.api.workspace import within_workspace
from linkguard.core.build.registry import NodeStateRegistry
from linkguard.core.graph.models import NODE_ID_RE
from linkguard.core.graph.state_machine import allowed_next
from linkguard.core.settings import load_settings

router = APIRouter(prefix="/api/v1/nodes", tags=["nodes"])


@router.get("/{node_id}")
def get_node(node_id: str, state_dir: Optional[str] = Query(default=None)):
    if not NODE_ID_RE.match(node_id):
        raise HTTPException(status_code=400, detail="invalid node_id")

    sd = within_workspace(state_dir or load_settings().state_dir, field="state_dir")
    rec = NodeStateRegistry(state_dir=sd).get(node_id)
    if rec is None:
        raise HTTPException(status_code=404, detail=f"no recorded state for node {node_id!r}")

    out = rec.to_dict()
    out["allowed_next"] = allowed_next(rec.status)
    return out
