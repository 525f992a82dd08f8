"""
Inbound webhooks: Calendly, Facebook Lead Ads, HubSpot and Zapier.

Non-200 answers are only given before anything has been written
(bad signature, unparseable body, invalid lead). Once work may have
started the sender gets a 200 and failures go to the logs, so webhook
providers do not retry into duplicate side effects.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Query, status
from fastapi.responses import PlainTextResponse
from typing import Any, Dict, List, Optional, Tuple
import json
import logging

from leadflow.container import ServiceContainer
from leadflow.dependencies import get_container
from leadflow.exceptions import LeadValidationError, WebhookSignatureError
from leadflow.schemas.lead import IntakeResponse
from leadflow.services.lead_normalizer import SOURCE_FACEBOOK, SOURCE_HUBSPOT, SOURCE_ZAPIER
from leadflow.services.signatures import verify_calendly_signature, verify_facebook_signature
from leadflow.services.tracking import generate_tracking_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])

HUBSPOT_CONTACT_EVENTS = ("contact.creation", "contact.propertyChange")


async def _read_json(request: Request, tracking_id: str) -> Tuple[bytes, Any]:
    raw = await request.body()
    try:
        return raw, json.loads(raw or b"null")
    except ValueError:
        logger.warning(f"[{tracking_id}] Webhook body is not valid JSON")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")


# ============================================
# CALENDLY
# ============================================

@router.post("/calendly")
async def calendly_webhook(
    request: Request,
    container: ServiceContainer = Depends(get_container)
):
    tracking_id = generate_tracking_id("calendly")
    raw, body = await _read_json(request, tracking_id)

    secret = container.settings.CALENDLY_WEBHOOK_SECRET
    if secret:
        try:
            verify_calendly_signature(raw, request.headers.get("Calendly-Webhook-Signature"), secret)
        except WebhookSignatureError as e:
            logger.warning(f"[{tracking_id}] {e}")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expected a JSON object")

    try:
        result = await container.meeting_events.process_calendly_event(body, tracking_id)
    except LeadValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors)
    except Exception as e:
        logger.error(f"[{tracking_id}] Calendly webhook failed: {str(e)}", exc_info=True)
        return {"success": False, "tracking_id": tracking_id, "error": "processing_failed"}

    return {"success": True, "tracking_id": tracking_id, **result}


# ============================================
# FACEBOOK LEAD ADS
# ============================================

@router.get("/facebook", response_class=PlainTextResponse)
async def facebook_verify(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    container: ServiceContainer = Depends(get_container)
):
    """Subscription handshake: echo the challenge when the token matches."""
    expected = container.settings.FACEBOOK_VERIFY_TOKEN
    if hub_mode == "subscribe" and expected and hub_verify_token == expected:
        logger.info("✅ Facebook webhook subscription verified")
        return hub_challenge or ""
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


def _leadgen_ids(body: Dict[str, Any]) -> List[str]:
    ids = []
    for entry in body.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field") != "leadgen":
                continue
            leadgen_id = (change.get("value") or {}).get("leadgen_id")
            if leadgen_id:
                ids.append(str(leadgen_id))
    return ids


@router.post("/facebook")
async def facebook_webhook(
    request: Request,
    container: ServiceContainer = Depends(get_container)
):
    tracking_id = generate_tracking_id("facebook")
    raw, body = await _read_json(request, tracking_id)

    app_secret = container.settings.FACEBOOK_APP_SECRET
    if app_secret:
        try:
            verify_facebook_signature(raw, request.headers.get("X-Hub-Signature-256"), app_secret)
        except WebhookSignatureError as e:
            logger.warning(f"[{tracking_id}] {e}")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expected a JSON object")

    source = container.sources.get("facebook")
    leadgen_ids = _leadgen_ids(body)
    if leadgen_ids and source is None:
        logger.warning(f"[{tracking_id}] Facebook leadgen received but no page token is configured")
        return {"success": True, "tracking_id": tracking_id, "processed": 0}

    processed = 0
    for leadgen_id in leadgen_ids:
        try:
            record = await source.fetch_by_id(leadgen_id)
            if record is None:
                logger.warning(f"[{tracking_id}] Facebook lead {leadgen_id} not found")
                continue
            await container.intake.ingest(record, SOURCE_FACEBOOK, tracking_id)
            processed += 1
        except Exception as e:
            logger.error(f"[{tracking_id}] Facebook lead {leadgen_id} failed: {str(e)}", exc_info=True)

    return {"success": True, "tracking_id": tracking_id, "processed": processed}


# ============================================
# HUBSPOT
# ============================================

@router.post("/hubspot")
async def hubspot_webhook(
    request: Request,
    container: ServiceContainer = Depends(get_container)
):
    """HubSpot sends a JSON array of subscription events; contacts are re-read by id."""
    tracking_id = generate_tracking_id("hubspot")
    _, body = await _read_json(request, tracking_id)

    events = body if isinstance(body, list) else [body]
    object_ids = []
    for event in events:
        if not isinstance(event, dict):
            continue
        if event.get("subscriptionType") in HUBSPOT_CONTACT_EVENTS and event.get("objectId"):
            object_id = str(event["objectId"])
            if object_id not in object_ids:
                object_ids.append(object_id)

    source = container.sources.get("hubspot")
    if object_ids and source is None:
        logger.warning(f"[{tracking_id}] HubSpot event received but no access token is configured")
        return {"success": True, "tracking_id": tracking_id, "processed": 0}

    processed = 0
    for object_id in object_ids:
        try:
            record = await source.fetch_by_id(object_id)
            if record is None:
                logger.warning(f"[{tracking_id}] HubSpot contact {object_id} not found")
                continue
            await container.intake.ingest(record, SOURCE_HUBSPOT, tracking_id)
            processed += 1
        except Exception as e:
            logger.error(f"[{tracking_id}] HubSpot contact {object_id} failed: {str(e)}", exc_info=True)

    return {"success": True, "tracking_id": tracking_id, "processed": processed}


# ============================================
# ZAPIER
# ============================================

@router.post("/zapier/lead", response_model=IntakeResponse)
async def zapier_webhook(
    request: Request,
    container: ServiceContainer = Depends(get_container)
):
    tracking_id = generate_tracking_id("zapier")
    _, body = await _read_json(request, tracking_id)
    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expected a JSON object")

    try:
        outcome = await container.intake.ingest(body, SOURCE_ZAPIER, tracking_id)
    except LeadValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors)
    except Exception as e:
        logger.error(f"[{tracking_id}] Zapier lead failed: {str(e)}", exc_info=True)
        return IntakeResponse(success=False, tracking_id=tracking_id)

    return IntakeResponse(success=True, **outcome)
