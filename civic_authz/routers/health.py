from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request) -> dict[str, object]:
    authz = getattr(request.app.state, "authz", None)
    return {"status": "ok", "authz_ready": authz is not None}
