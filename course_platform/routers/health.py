"""Health check route."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from course_platform import __version__
from course_platform.store import DataStore, get_store

router = APIRouter(tags=["health"])


@router.get("/health")
def health(store: DataStore = Depends(get_store)):
    """Service liveness plus data store reachability."""
    store_ok = store.ping()
    return JSONResponse(
        {
            "status": "healthy" if store_ok else "degraded",
            "version": __version__,
            "checks": {"store": "ok" if store_ok else "unreachable"},
        },
        status_code=200 if store_ok else 503,
    )
