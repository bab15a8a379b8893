"""
Carrier tracking vocabulary.

Maps the carrier's status codes and free-text actions onto TrackingStatus and
normalizes event lists into time order.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from backend.app.domain.carrier.models import TrackingEvent, TrackingStatus

STATUS_CODES = {
    "BKD": TrackingStatus.BOOKED,
    "SOFTDATA": TrackingStatus.BOOKED,
    "PCUP": TrackingStatus.PICKED_UP,
    "PKD": TrackingStatus.PICKED_UP,
    "PCSC": TrackingStatus.PICKED_UP,
    "IT": TrackingStatus.IN_TRANSIT,
    "OBMD": TrackingStatus.IN_TRANSIT,
    "IBMN": TrackingStatus.IN_TRANSIT,
    "CDOUT": TrackingStatus.IN_TRANSIT,
    "CDIN": TrackingStatus.IN_TRANSIT,
    "OUTDLV": TrackingStatus.OUT_FOR_DELIVERY,
    "OFD": TrackingStatus.OUT_FOR_DELIVERY,
    "DLV": TrackingStatus.DELIVERED,
    "DELIVERED": TrackingStatus.DELIVERED,
    "RTO": TrackingStatus.RETURNED,
    "RTD": TrackingStatus.RETURNED,
    "NONDLV": TrackingStatus.FAILED,
    "UNDLV": TrackingStatus.FAILED,
}

# Checked in order; more specific phrases first
STATUS_KEYWORDS = [
    ("OUT FOR DELIVERY", TrackingStatus.OUT_FOR_DELIVERY),
    ("NOT DELIVERED", TrackingStatus.FAILED),
    ("UNDELIVERED", TrackingStatus.FAILED),
    ("NON DELIVERY", TrackingStatus.FAILED),
    ("FAILED", TrackingStatus.FAILED),
    ("CANCEL", TrackingStatus.FAILED),
    ("RETURN", TrackingStatus.RETURNED),
    ("RTO", TrackingStatus.RETURNED),
    ("DELIVERED", TrackingStatus.DELIVERED),
    ("PICK", TrackingStatus.PICKED_UP),
    ("BOOK", TrackingStatus.BOOKED),
    ("MANIFEST", TrackingStatus.BOOKED),
    ("TRANSIT", TrackingStatus.IN_TRANSIT),
    ("DISPATCH", TrackingStatus.IN_TRANSIT),
    ("RECEIVED", TrackingStatus.IN_TRANSIT),
    ("ARRIVED", TrackingStatus.IN_TRANSIT),
    ("PROCESSING", TrackingStatus.IN_TRANSIT),
]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def map_status(code: Optional[str] = None, text: Optional[str] = None) -> TrackingStatus:
    """Code table first, then keywords in the code and the free text."""
    if code:
        normalized = code.strip().upper()
        if normalized in STATUS_CODES:
            return STATUS_CODES[normalized]

    for candidate in (code, text):
        if not candidate:
            continue
        upper = candidate.upper().replace("_", " ").replace("-", " ")
        for keyword, status in STATUS_KEYWORDS:
            if keyword in upper:
                return status

    return TrackingStatus.UNKNOWN


def parse_timestamp(raw: Dict[str, Any]) -> Optional[datetime]:
    """Accepts ISO-8601 'timestamp' or the carrier's ddmmyyyy date + hhmm time pair."""
    value = raw.get("timestamp") or raw.get("time")
    if value:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    date_part = raw.get("strActionDate")
    if date_part:
        time_part = str(raw.get("strActionTime") or "0000").zfill(4)
        try:
            return datetime.strptime(f"{date_part}{time_part}", "%d%m%Y%H%M").replace(tzinfo=timezone.utc)
        except ValueError:
            return None
    return None


def parse_events(raw_events: Iterable[Dict[str, Any]]) -> List[TrackingEvent]:
    """Normalize raw carrier events and order them oldest first."""
    events = []
    for raw in raw_events:
        if not isinstance(raw, dict):
            continue
        code = raw.get("strCode") or raw.get("scan_code") or raw.get("code")
        text = raw.get("strAction") or raw.get("status") or raw.get("description")
        events.append(TrackingEvent(
            status=map_status(code, text),
            code=code,
            location=raw.get("strOrigin") or raw.get("location"),
            timestamp=parse_timestamp(raw),
            description=raw.get("description") or raw.get("strAction") or raw.get("status"),
        ))

    events.sort(key=lambda e: e.timestamp or _EPOCH)
    return events


def extract_raw_events(body: Dict[str, Any]) -> List[Dict[str, Any]]:
    for key in ("trackDetails", "events", "tracking_history", "history"):
        value = body.get(key)
        if isinstance(value, list):
            return value
    data = body.get("tracking_data")
    if isinstance(data, dict):
        return extract_raw_events(data)
    return []


def current_status(body: Dict[str, Any], events: List[TrackingEvent]) -> TrackingStatus:
    if events:
        return events[-1].status
    header = body.get("trackHeader") or {}
    return map_status(header.get("strStatusCode"), header.get("strStatus") or body.get("current_status"))
