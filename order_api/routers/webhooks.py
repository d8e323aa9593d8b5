"""
Payment webhook endpoint.

Status mapping:
    400 -- signature or envelope rejected; redelivery will not help.
    500 -- processing failed; the event is not recorded and the sender
           retries.
    200 -- processed, acknowledged or duplicate.
"""

from fastapi import APIRouter, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from order_kernel.exceptions import InvalidSignatureError, InvalidWebhookPayloadError
from order_kernel.logging_config import get_logger
from order_kernel.services.webhook_processor import ExternalEvent, WebhookStatus

logger = get_logger("api.webhooks")

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

SIGNATURE_HEADER = "Payment-Signature"


@router.post("/payments")
async def receive_payment_event(request: Request) -> JSONResponse:
    runtime = request.app.state.runtime
    body = await request.body()

    try:
        runtime.verifier.verify(body, request.headers.get(SIGNATURE_HEADER))
    except InvalidSignatureError as exc:
        logger.warning("webhook_signature_rejected", extra={"reason": exc.reason})
        return JSONResponse(
            {"error": "Invalid signature", "code": exc.code},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    try:
        event = ExternalEvent.from_json(body)
    except InvalidWebhookPayloadError as exc:
        logger.warning("webhook_payload_rejected", extra={"reason": exc.reason})
        return JSONResponse(
            {"error": str(exc), "code": exc.code},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    result = await run_in_threadpool(runtime.processor.process, event)
    if not result.acknowledged:
        return JSONResponse(
            {"error": result.error or "Processing failed"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    payload: dict[str, object] = {"received": True}
    if result.status == WebhookStatus.DUPLICATE:
        payload["deduplicated"] = True
    if result.action:
        payload["action"] = result.action
    return JSONResponse(payload)
