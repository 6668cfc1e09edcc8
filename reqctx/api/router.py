from __future__ import annotations

from fastapi import APIRouter

from reqctx.api import context, data

api_router = APIRouter()
api_router.include_router(data.router)
api_router.include_router(context.router)
