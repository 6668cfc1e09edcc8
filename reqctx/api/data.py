from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from reqctx.context.handle import Context
from reqctx.context.scope import use_context
from reqctx.core.deps import get_request_context

router = APIRouter(tags=["data"])


class UserIn(BaseModel):
    username: str
    email: str


def _bump(counter: dict[str, Any] | None) -> dict[str, Any]:
    # Deliberately reads the ambient context instead of taking it as a parameter.
    ctx = use_context()
    current = dict(counter or {"count": 0})
    current["count"] = int(current.get("count") or 0) + 1
    if ctx is not None:
        ctx.set("initialData", current)
    return current


@router.get("/data")
def get_data(ctx: Context = Depends(get_request_context)) -> Any:
    return ctx.get("initialData")


@router.put("/data")
def update_data(ctx: Context = Depends(get_request_context)) -> dict[str, Any]:
    _bump(ctx.get("initialData"))
    return {"message": "Data updated", "data": ctx.get("initialData")}


@router.get("/user")
def get_user(ctx: Context = Depends(get_request_context)) -> dict[str, Any]:
    user = ctx.get("user")
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": user}


@router.post("/user", status_code=201)
def set_user(body: UserIn, ctx: Context = Depends(get_request_context)) -> dict[str, Any]:
    user = {"username": body.username, "email": body.email}
    ctx.set("user", user)
    return {"message": "User data set successfully", "user": user}
