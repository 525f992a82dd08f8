"""Correlation ids for inbound events, jobs and log lines."""

import hashlib
import secrets
import time
from typing import Any, Dict, Optional


def _base36(number: int) -> str:
    chars = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(chars[rem])
    return "".join(reversed(digits))


def _timestamp() -> str:
    return _base36(int(time.time() * 1000))


def generate_tracking_id(prefix: str = "track") -> str:
    """Generate `prefix_<base36 ms>_<12 hex>`."""
    return f"{prefix}_{_timestamp()}_{secrets.token_hex(6)}"


def generate_workflow_tracking_id(lead_id: Any, workflow_type: str) -> str:
    short_lead_id = str(lead_id).replace("-", "")[:8]
    return f"workflow_{workflow_type}_{short_lead_id}_{_timestamp()}_{secrets.token_hex(4)}"


def generate_meeting_tracking_id(lead_id: Any, kind: str) -> str:
    short_lead_id = str(lead_id).replace("-", "")[:8]
    return f"meeting_{kind}_{short_lead_id}_{_timestamp()}_{secrets.token_hex(4)}"


def parse_tracking_id(tracking_id: str) -> Dict[str, Optional[str]]:
    """
    Split a tracking id into its parts.

    Workflow/meeting ids carry a subtype that may itself contain underscores
    (e.g. ``workflow_initial_engagement_...``), so parsing works from the
    right: the last three parts are always lead id, timestamp and random part.
    """
    if not tracking_id or not isinstance(tracking_id, str):
        return {"valid": False, "error": "Invalid tracking ID format"}

    parts = tracking_id.split("_")
    if len(parts) < 3:
        return {"valid": False, "error": "Invalid tracking ID format"}

    if len(parts) == 3:
        return {
            "valid": True,
            "type": parts[0],
            "subtype": None,
            "lead_id": None,
            "timestamp": parts[1],
            "random_part": parts[2],
            "full_id": tracking_id,
        }

    return {
        "valid": True,
        "type": parts[0],
        "subtype": "_".join(parts[1:-3]) or None,
        "lead_id": parts[-3],
        "timestamp": parts[-2],
        "random_part": parts[-1],
        "full_id": tracking_id,
    }


def is_valid_tracking_id(tracking_id: Any) -> bool:
    return bool(parse_tracking_id(tracking_id).get("valid"))


def hash_for_logging(value: Optional[str]) -> str:
    """Short SHA-256 digest so contact details never reach the logs."""
    if not value:
        return "[MISSING]"
    digest = hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()
    return f"sha256:{digest[:12]}"
