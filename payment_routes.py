from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request

from auth import TokenSubject, current_subject, require_admin
from config import Settings
from deps import get_gateway, get_settings, get_storage
from payments import (
    StripeGateway,
    create_payment_intent,
    handle_webhook_event,
    parse_webhook_event,
    sync_products,
)
from schemas import PaymentIntentRequest
from storage import Storage

payment_router = APIRouter(prefix="/api", tags=["payments"])


@payment_router.post("/create-payment-intent")
def create_intent(
    payload: PaymentIntentRequest,
    subject: TokenSubject = Depends(current_subject),
    storage: Storage = Depends(get_storage),
    gateway: Optional[StripeGateway] = Depends(get_gateway),
) -> Dict[str, Any]:
    return create_payment_intent(storage, gateway, subject.id, payload)


@payment_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    storage: Storage = Depends(get_storage),
    gateway: Optional[StripeGateway] = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    event = parse_webhook_event(settings, gateway, payload, sig_header)
    return handle_webhook_event(storage, event)


@payment_router.post("/stripe/sync-products")
def sync_catalog(
    _: TokenSubject = Depends(require_admin),
    storage: Storage = Depends(get_storage),
    gateway: Optional[StripeGateway] = Depends(get_gateway),
) -> Dict[str, Any]:
    counts = sync_products(storage, gateway)
    return {"success": True, "message": "Products synced successfully", **counts}
