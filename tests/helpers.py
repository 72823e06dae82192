"""Builders for Stripe-shaped webhook deliveries"""
import hashlib
import hmac
import json
import time
import uuid
from typing import Optional

WEBHOOK_SECRET = "whsec_test_secret"

ACTIVE_CAMPAIGN_ID = "11111111-1111-1111-1111-111111111111"
ENDED_CAMPAIGN_ID = "22222222-2222-2222-2222-222222222222"
PARTICIPANT_ID = "33333333-3333-3333-3333-333333333333"
OTHER_PARTICIPANT_ID = "44444444-4444-4444-4444-444444444444"


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header using Stripe's scheme: HMAC-SHA256 over '<t>.<body>'"""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def event_body(event_type: str, data_object: dict, event_id: Optional[str] = None) -> bytes:
    return json.dumps(
        {
            "id": event_id or f"evt_{uuid.uuid4().hex}",
            "object": "event",
            "type": event_type,
            "data": {"object": data_object},
        }
    ).encode("utf-8")


def intent_object(intent_id: str, status: str = "succeeded", amount: int = 10000, **metadata) -> dict:
    return {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "currency": "usd",
        "status": status,
        "metadata": metadata,
        "receipt_email": None,
    }
