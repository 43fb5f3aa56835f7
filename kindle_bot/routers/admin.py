"""Admin endpoints for inspecting bot state."""

import json
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(expected: str, provided: Optional[str]) -> None:
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.get("/users/export")
async def export_users(
    request: Request,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(request.app.state.settings.admin_token, x_admin_token)
    users = json.loads(request.app.state.user_store.export_data())
    return {"count": len(users), "users": users}
