"""Square webhook endpoint."""

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from square_sync.api.dependencies import Bridge

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/square", response_class=PlainTextResponse)
async def square_webhook(request: Request, bridge: Bridge) -> PlainTextResponse:
    """Verify, dedupe and apply one Square event.

    The signature covers the exact bytes received, so the body is read raw.
    """
    raw_body = await request.body()
    response = await run_in_threadpool(bridge.handle_webhook, raw_body, dict(request.headers))
    return PlainTextResponse(response.body, status_code=response.status_code)
