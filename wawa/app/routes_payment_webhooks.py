"""Inbound payment gateway webhooks.

The body is read raw and handed to the gateway untouched so the signature is
checked over the exact bytes that were signed. Every outcome the core can
absorb (applied, duplicate, ignored, unknown reference) is acknowledged with
``200``; only a bad signature or an unreadable body is refused, which the
gateways treat as "retry later".
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from .core import Core
from .deps import get_core
from .gateways.base import Gateway
from .utils.responses import ok

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


async def _reconcile(gateway: Gateway, request: Request) -> dict:
    raw_body = await request.body()
    signature = request.headers.get(gateway.signature_header)
    result = await run_in_threadpool(gateway.reconcile, raw_body, signature)
    return ok(result.as_dict())


@router.post("/monnify")
async def monnify_webhook(request: Request, core: Core = Depends(get_core)) -> dict:
    return await _reconcile(core.monnify, request)


@router.get("/monnify")
async def monnify_health() -> dict:
    return ok({"status": "ok", "message": "Monnify webhook endpoint is active"})


@router.post("/paystack")
async def paystack_webhook(request: Request, core: Core = Depends(get_core)) -> dict:
    return await _reconcile(core.paystack, request)


@router.get("/paystack")
async def paystack_health() -> dict:
    return ok({"status": "ok", "message": "Paystack webhook endpoint is active"})


__all__ = ["router"]
