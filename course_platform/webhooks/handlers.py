"""WooCommerce webhook HTTP handler.

Each delivery:
1. Reads the raw body (needed for HMAC verification)
2. Verifies the X-WC-Webhook-Signature header
3. Parses the order payload
4. Runs ingestion in the threadpool (store and identity calls block)

Security contract:
- 401 on any signature failure, before the payload is parsed
- Line-level failures are never reported to the caller
- Every delivery ends in one WEBHOOK_AUDIT log line
"""

from __future__ import annotations

import json
import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PayloadError
from starlette.concurrency import run_in_threadpool

from course_platform.channels import get_dispatcher
from course_platform.config import get_settings
from course_platform.errors import PersistenceError
from course_platform.identity import get_identity_provider
from course_platform.store import get_store
from course_platform.webhooks.ingestion import OrderIngestor
from course_platform.webhooks.models import WooCommerceOrder
from course_platform.webhooks.verification import SIGNATURE_HEADER, verify_signature

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/woocommerce/webhook"

# Delivery counts by outcome (in-memory, per process)
_webhook_counts: dict[str, int] = {}


def _log_webhook(order_id: object, status: str) -> None:
    """Audit log for webhook activity."""
    _webhook_counts[status] = _webhook_counts.get(status, 0) + 1
    logger.info("WEBHOOK_AUDIT order=%s status=%s count=%d", order_id, status, _webhook_counts[status])


def build_ingestor() -> OrderIngestor:
    return OrderIngestor(get_store(), get_identity_provider(), get_dispatcher())


async def handle_woocommerce_webhook(request: Request) -> JSONResponse:
    start = time.time()
    body = await request.body()

    signature = request.headers.get(SIGNATURE_HEADER)
    if not verify_signature(body, signature, get_settings().woocommerce_webhook_secret):
        _log_webhook("unknown", "signature_failed")
        return JSONResponse({"error": "Invalid signature"}, status_code=401)

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        # WooCommerce pings a new webhook with a form-encoded "webhook_id=N" body
        _log_webhook("unknown", "ping")
        return JSONResponse({"message": "Webhook ping received"})

    try:
        order = WooCommerceOrder.model_validate(payload)
    except PayloadError as e:
        _log_webhook("unknown", "invalid_payload")
        return JSONResponse(
            {"error": "Invalid order payload", "details": e.errors(include_url=False, include_context=False)},
            status_code=400,
        )

    try:
        result = await run_in_threadpool(build_ingestor().ingest, order)
    except PersistenceError as e:
        _log_webhook(order.id, "persist_failed")
        return JSONResponse(e.to_dict(), status_code=500)

    _log_webhook(order.id, result.outcome)
    logger.debug("Webhook processed in %.1fms: order=%s", (time.time() - start) * 1000, order.id)

    if result.outcome == "skipped":
        return JSONResponse({"message": "Order not completed, skipping"})
    if result.outcome == "duplicate":
        return JSONResponse({"message": "Order already processed"})
    return JSONResponse(
        {"success": True, "message": "Order processed successfully", "order_id": order.id}
    )


def register_webhook_routes(app: FastAPI) -> None:
    """Register webhook endpoint routes on the FastAPI app."""

    @app.post(WEBHOOK_PATH)
    async def woocommerce_webhook(request: Request):
        """Receive WooCommerce order webhooks (signature-verified)."""
        return await handle_woocommerce_webhook(request)

    logger.info("Webhook routes registered: %s", WEBHOOK_PATH)
