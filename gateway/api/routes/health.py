from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Liveness check for the gateway itself.

    Does not contact any backend; lists the services the gateway routes to.
    """

    return {"status": "ok", "services": list(request.app.state.route_table)}
