# routes_root.py
"""
Root / basic endpoints (health).
"""

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
def health():
    """Liveness probe; the only route that never asks for x-api-key."""
    return {"ok": True}
