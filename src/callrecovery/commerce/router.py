"""
FastAPI router for commerce platform webhooks.

Requests are verified with ``X-Shopify-Hmac-Sha256`` when a commerce webhook
secret is configured; the shop comes from ``X-Shopify-Shop-Domain``.
Unusable payloads are acknowledged with 200 so the platform does not retry.
"""

import json
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.checkouts.ingest import CheckoutPayload
from callrecovery.checkouts.repository import CheckoutRepository
from callrecovery.commerce.signature import verify_hmac
from callrecovery.config import get_settings
from callrecovery.orders.service import OrderPayload, handle_order_created
from callrecovery.shared.database import get_db_session
from callrecovery.shared.exceptions import WebhookAuthError, WebhookPayloadError
from callrecovery.shared.logging import get_logger
from callrecovery.tenants.service import teardown_tenant

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["commerce"])


async def verified_payload(
    request: Request,
    x_shopify_shop_domain: Annotated[str | None, Header()] = None,
    x_shopify_hmac_sha256: Annotated[str | None, Header()] = None,
) -> tuple[str, dict[str, Any]]:
    """Authenticate a platform webhook and return ``(shop, payload)``."""
    body = await request.body()
    secret = get_settings().commerce_webhook_secret
    if secret and not verify_hmac(secret, body, x_shopify_hmac_sha256):
        raise WebhookAuthError("Invalid webhook signature")

    shop = (x_shopify_shop_domain or "").strip()
    if not shop:
        raise WebhookPayloadError("Missing shop domain header")

    try:
        payload = json.loads(body or b"null")
    except ValueError as e:
        raise WebhookPayloadError("Webhook body is not valid JSON") from e
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")
    return shop, payload


@router.post("/orders/create")
async def order_created(
    verified: Annotated[tuple[str, dict[str, Any]], Depends(verified_payload)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> dict[str, Any]:
    shop, payload = verified
    order = OrderPayload.from_platform(payload)
    if order is None:
        logger.warning("Order webhook without id ignored", extra={"shop": shop})
        return {"ok": True, "ignored": True}

    result = await handle_order_created(session, shop, order)
    return {
        "ok": True,
        "order_id": result.order_id,
        "checkout_id": result.checkout_id,
        "canceled_jobs": result.canceled_jobs,
        "recovered": result.recovered,
    }


@router.post("/checkouts/create")
async def checkout_created(
    verified: Annotated[tuple[str, dict[str, Any]], Depends(verified_payload)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> dict[str, Any]:
    shop, payload = verified
    checkout = CheckoutPayload.from_platform(payload)
    if checkout is None:
        logger.warning("Checkout webhook without id or total ignored", extra={"shop": shop})
        return {"ok": True, "ignored": True}

    row = await CheckoutRepository(session).upsert(shop, checkout)
    status = row.status.value
    await session.commit()
    logger.info(
        "Checkout upserted",
        extra={"shop": shop, "checkout_id": checkout.checkout_id, "status": status},
    )
    return {"ok": True, "checkout_id": checkout.checkout_id, "status": status}


@router.post("/app/uninstalled")
async def app_uninstalled(
    verified: Annotated[tuple[str, dict[str, Any]], Depends(verified_payload)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> dict[str, Any]:
    shop, _ = verified
    counts = await teardown_tenant(session, shop)
    return {"ok": True, "deleted": counts}
