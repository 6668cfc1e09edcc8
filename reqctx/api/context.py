from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from reqctx.context.handle import Context
from reqctx.core.deps import get_request_context

router = APIRouter(prefix="/context", tags=["context"])


class SetRequest(BaseModel):
    value: Any = None
    ttl: float | None = Field(default=None, gt=0)


@router.get("")
def snapshot(ctx: Context = Depends(get_request_context)) -> dict[str, Any]:
    return {"identity": ctx.identity, "values": jsonable_encoder(ctx.snapshot())}


@router.get("/{key}")
def read(key: str, ctx: Context = Depends(get_request_context)) -> dict[str, Any]:
    return {"key": key, "found": ctx.has(key), "value": jsonable_encoder(ctx.get(key))}


@router.put("/{key}")
def write(key: str, req: SetRequest, ctx: Context = Depends(get_request_context)) -> dict[str, Any]:
    ctx.set(key, req.value, ttl=req.ttl)
    # set() reports rejected writes to onError instead of raising.
    return {"ok": ctx.has(key), "key": key, "value": jsonable_encoder(ctx.get(key))}


@router.delete("/{key}")
def clear(key: str, ctx: Context = Depends(get_request_context)) -> dict[str, Any]:
    ctx.clear(key)
    return {"ok": True, "key": key}
