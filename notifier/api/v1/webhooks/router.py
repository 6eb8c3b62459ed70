"""
Inbound provider callbacks
Delivery receipts from SendGrid, Twilio and Vonage, plus signed batches from
our own services, are handed to the webhook reconciler.
"""

from fastapi import APIRouter, Depends, Header, Request
from typing import Any, Dict, List, Optional
from sendgrid.helpers.eventwebhook import EventWebhook, EventWebhookHeader
from twilio.request_validator import RequestValidator
import json
import logging

from notifier.api.deps import get_services
from notifier.core.config import settings
from notifier.core.exceptions import BadRequestException, UnauthorizedException
from notifier.services.channels.webhook import verify_signature
from notifier.services.factory import NotifierServices

router = APIRouter()
logger = logging.getLogger(__name__)

def _parse_json(body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        raise BadRequestException("Request body is not valid JSON")

def _as_events(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        payload = payload.get("events", [payload])
    if not isinstance(payload, list) or not all(isinstance(e, dict) for e in payload):
        raise BadRequestException("Expected an event object or a list of events")
    return payload

@router.post("/sendgrid")
async def sendgrid_events(
    request: Request,
    services: NotifierServices = Depends(get_services),
):
    """SendGrid event webhook (JSON array of events)"""
    body = await request.body()

    if settings.SENDGRID_WEBHOOK_VERIFY:
        signature = request.headers.get(EventWebhookHeader.SIGNATURE)
        timestamp = request.headers.get(EventWebhookHeader.TIMESTAMP)
        if not signature or not timestamp or not settings.SENDGRID_WEBHOOK_PUBLIC_KEY:
            raise UnauthorizedException("Missing SendGrid signature")

        event_webhook = EventWebhook()
        public_key = event_webhook.convert_public_key_to_ecdsa(settings.SENDGRID_WEBHOOK_PUBLIC_KEY)
        if not event_webhook.verify_signature(body.decode("utf-8"), signature, timestamp, public_key):
            raise UnauthorizedException("Invalid SendGrid signature")

    events = _as_events(_parse_json(body))
    applied = await services.reconciler.reconcile("sendgrid", events)
    return {"received": len(events), "applied": applied}

@router.post("/twilio")
async def twilio_status_callback(
    request: Request,
    x_twilio_signature: Optional[str] = Header(None),
    services: NotifierServices = Depends(get_services),
):
    """Twilio message status callback (form encoded)"""
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}

    if settings.TWILIO_WEBHOOK_VERIFY:
        validator = RequestValidator(settings.TWILIO_AUTH_TOKEN or "")
        if not x_twilio_signature or not validator.validate(str(request.url), params, x_twilio_signature):
            raise UnauthorizedException("Invalid Twilio signature")

    # notification_id and recipient travel on the callback URL we registered
    event = {**params, **dict(request.query_params)}
    applied = await services.reconciler.reconcile("twilio", [event])
    return {"received": 1, "applied": applied}

@router.api_route("/vonage", methods=["GET", "POST"])
async def vonage_delivery_receipt(
    request: Request,
    services: NotifierServices = Depends(get_services),
):
    """Vonage delivery receipt, JSON body or query string"""
    if request.method == "POST":
        event = _parse_json(await request.body())
        if not isinstance(event, dict):
            raise BadRequestException("Expected a delivery receipt object")
    else:
        event = dict(request.query_params)

    applied = await services.reconciler.reconcile("vonage", [event])
    return {"received": 1, "applied": applied}

@router.post("/events")
async def signed_status_events(
    request: Request,
    x_signature_256: Optional[str] = Header(None),
    x_signature: Optional[str] = Header(None),
    services: NotifierServices = Depends(get_services),
):
    """Status batches from our own services, signed with WEBHOOK_SECRET"""
    body = await request.body()
    if not verify_signature(body, x_signature_256 or x_signature, settings.WEBHOOK_SECRET):
        logger.warning("Rejected status batch with missing or invalid signature")
        raise UnauthorizedException("Invalid signature")

    events = _as_events(_parse_json(body))
    applied = await services.reconciler.reconcile("generic", events)
    return {"received": len(events), "applied": applied}
