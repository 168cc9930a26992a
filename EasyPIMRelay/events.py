"""
Inbound event handling: payload normalization, Event Grid handshakes and
classification of Key Vault change notifications.

Everything here works on untrusted input and must not raise for any body a
sender can POST.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import azure.functions as func

UNKNOWN = "Unknown"
SUBSCRIPTION_VALIDATION_EVENT = "Microsoft.EventGrid.SubscriptionValidationEvent"

EVENT_SOURCE_KEYVAULT = "keyvault"
EVENT_SOURCE_MANUAL = "manual"

# Limit on raw body text written to logs
_LOG_BODY_LIMIT = 20000


@dataclass(frozen=True)
class Event:
    """Normalized inbound notification. Always well formed."""

    eventType: str = UNKNOWN
    subject: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Classification:
    secretName: str = UNKNOWN
    vaultName: str = UNKNOWN
    eventSource: str = EVENT_SOURCE_MANUAL

    def to_dict(self) -> Dict[str, str]:
        return {"secretName": self.secretName, "vaultName": self.vaultName, "eventSource": self.eventSource}


# ---------------------------------------------------------------------------
# EventPayloadParser
# ---------------------------------------------------------------------------


def _unknown_event() -> Event:
    return Event()


def _coerce_event(obj: Any) -> Event:
    """Map a decoded JSON value onto the Event shape, defaulting missing fields."""
    if isinstance(obj, list):
        items = [it for it in obj if isinstance(it, Mapping)]
        if not items:
            logging.warning("Event array contained no event objects; treating as Unknown event.")
            return _unknown_event()
        if len(obj) > 1:
            logging.warning(f"Event batch of {len(obj)} items received; only the first event is relayed.")
        obj = items[0]

    if not isinstance(obj, Mapping):
        logging.warning(f"Event payload is a {type(obj).__name__}, not an object; treating as Unknown event.")
        return _unknown_event()

    event_type = obj.get("eventType")
    if not isinstance(event_type, str) or not event_type:
        event_type = UNKNOWN

    subject = obj.get("subject")
    if not isinstance(subject, str) or not subject:
        subject = None

    data = obj.get("data")
    data = dict(data) if isinstance(data, Mapping) else {}

    return Event(eventType=event_type, subject=subject, data=data)


def parse(raw_body: Any) -> Event:
    """Normalize an HTTP body (text, bytes, pre-parsed JSON or garbage) into an Event.

    Never raises: anything that cannot be understood becomes the Unknown event
    so the sender is not pushed into a retry loop for a payload that will
    never parse.
    """
    try:
        if raw_body is None:
            return _unknown_event()

        if isinstance(raw_body, (bytes, bytearray)):
            raw_body = bytes(raw_body).decode("utf-8-sig", errors="replace")

        if isinstance(raw_body, str):
            text = raw_body.lstrip("\ufeff").strip()
            if not text.startswith(("{", "[")):
                logging.info(f"Non-JSON request body received (first 20k chars): {raw_body[:_LOG_BODY_LIMIT]}")
                return _unknown_event()
            try:
                decoded = json.loads(text)
            except ValueError as ex:
                logging.warning(f"Failed to decode JSON body: {ex}. Raw body (first 20k chars): {raw_body[:_LOG_BODY_LIMIT]}")
                return _unknown_event()
            return _coerce_event(decoded)

        # Already parsed by the host
        return _coerce_event(raw_body)
    except Exception:
        logging.exception("Unexpected error while parsing event payload; treating as Unknown event.")
        return _unknown_event()


# ---------------------------------------------------------------------------
# ValidationHandshakeResponder
# ---------------------------------------------------------------------------


def try_respond(event: Event) -> Optional[func.HttpResponse]:
    """Answer an Event Grid subscription validation event, or return None."""
    if event.eventType != SUBSCRIPTION_VALIDATION_EVENT:
        return None

    code = event.data.get("validationCode")
    if not isinstance(code, str) or not code:
        logging.warning("Subscription validation event without validationCode.")
        return func.HttpResponse("Missing validationCode.", status_code=400)

    logging.info("Answering Event Grid subscription validation handshake.")
    body = json.dumps({"validationResponse": code}, separators=(",", ":"))
    return func.HttpResponse(body, status_code=200, mimetype="application/json")


def try_respond_options(req: func.HttpRequest) -> Optional[func.HttpResponse]:
    """CloudEvents v1.0 webhook validation (abuse protection) sent as OPTIONS."""
    if not req.method or req.method.upper() != "OPTIONS":
        return None

    origin = req.headers.get("WebHook-Request-Origin")
    if not origin:
        return func.HttpResponse("Missing WebHook-Request-Origin header.", status_code=400)

    headers = {"WebHook-Allowed-Origin": origin}
    if req.headers.get("WebHook-Request-Rate"):
        headers["WebHook-Allowed-Rate"] = "*"
    logging.info(f"Answering CloudEvents webhook validation for origin {origin}.")
    return func.HttpResponse(status_code=200, headers=headers)


# ---------------------------------------------------------------------------
# EventClassifier
# ---------------------------------------------------------------------------


def classify(event: Event) -> Classification:
    """Extract the secret, vault and source of a Key Vault notification."""
    secret_name = event.data.get("ObjectName")
    vault_name = event.data.get("VaultName")
    return Classification(
        secretName=str(secret_name) if secret_name is not None else UNKNOWN,
        vaultName=str(vault_name) if vault_name is not None else UNKNOWN,
        # Any subject at all means the event came through Key Vault
        eventSource=EVENT_SOURCE_KEYVAULT if event.subject else EVENT_SOURCE_MANUAL,
    )
