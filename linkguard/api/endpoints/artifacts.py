from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from linkguard.api.workspace import within_workspace
from linkguard.core.errors import LinkguardError
from linkguard.core.inspect.inspector import inspect_artifact
from linkguard.core.observability.metrics import inc_named, inc_verification
from linkguard.core.policy.models import Configuration, EffectivePolicy, RuntimeMode
from linkguard.core.verify.verifier import verify_artifact

router = APIRouter(prefix="/api/v1/artifacts", tags=["artifacts"])


class InspectRequest(BaseModel):
    path: str


class VerifyRequest(BaseModel):
    path: str
    runtime: str = "Static"
    configuration: str = "Release"


@router.post("/inspect")
def inspect(req: InspectRequest):
    inc_named("api_inspect")
    path = within_workspace(req.path, field="path")
    try:
        artifact = inspect_artifact(path)
    except LinkguardError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())
    return artifact.to_dict()


@router.post("/verify")
def verify(req: VerifyRequest):
    inc_named("api_verify")
    path = within_workspace(req.path, field="path")
    try:
        policy = EffectivePolicy(
            runtime=RuntimeMode.parse(req.runtime),
            configuration=Configuration.parse(req.configuration),
        )
        artifact = inspect_artifact(path)
    except LinkguardError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())

    report = verify_artifact(artifact, policy)
    inc_verification("passed" if report.passed else "failed")
    return {"report": report.to_dict(), "artifact": artifact.to_dict()}
