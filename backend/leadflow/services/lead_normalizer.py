"""
Lead normalization.

Converts source payloads (HubSpot contacts, Facebook Lead Ads submissions,
Calendly invitees, Zapier and anything else) into CanonicalLead. Source
fields without a canonical home are kept in `fields` instead of dropped.
"""

import re
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Tuple
import phonenumbers
from nameparser import HumanName

from leadflow.clock import to_naive_utc
from leadflow.schemas.lead import CanonicalLead, ValidationResult
from leadflow.services.tracking import hash_for_logging

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

SOURCE_HUBSPOT = "hubspot_crm"
SOURCE_FACEBOOK = "facebook_lead_ads"
SOURCE_CALENDLY = "calendly"
SOURCE_ZAPIER = "zapier"

# HubSpot property -> canonical field
HUBSPOT_PROPERTY_MAP = {
    "email": "email",
    "firstname": "first_name",
    "lastname": "last_name",
    "phone": "phone",
    "mobilephone": "phone",
    "company": "company",
    "jobtitle": "job_title",
    "website": "website",
    "city": "city",
    "state": "state",
    "country": "country",
    "zip": "zip",
    "lifecyclestage": "lifecycle_stage",
    "lead_source": "lead_source",
}
HUBSPOT_METADATA_PROPERTIES = {"hs_object_id", "createdate", "lastmodifieddate"}

# Facebook Lead Ads form field name -> canonical field
FACEBOOK_FIELD_MAP = {
    "email": "email",
    "first_name": "first_name",
    "last_name": "last_name",
    "full_name": "full_name",
    "phone_number": "phone",
    "phone": "phone",
    "company_name": "company",
    "job_title": "job_title",
    "city": "city",
    "state": "state",
    "province": "state",
    "country": "country",
    "zip_code": "zip",
    "post_code": "zip",
    "postal_code": "zip",
}

# Canonical field -> aliases tried in order by the generic mapper
GENERIC_ALIASES: Dict[str, Tuple[str, ...]] = {
    "external_id": ("id", "contact_id", "lead_id", "external_id"),
    "email": ("email", "email_address", "e-mail"),
    "first_name": ("first_name", "firstname", "given_name", "fname"),
    "last_name": ("last_name", "lastname", "surname", "family_name", "lname"),
    "full_name": ("full_name", "fullname", "name"),
    "phone": ("phone", "phone_number", "mobile", "telephone"),
    "company": ("company", "company_name", "organization"),
    "job_title": ("job_title", "title", "jobtitle", "position"),
    "website": ("website", "url", "domain"),
    "city": ("city",),
    "state": ("state", "province", "region"),
    "country": ("country",),
    "zip": ("zip", "postal_code", "zipcode", "zip_code"),
    "lead_source": ("lead_source",),
    "lifecycle_stage": ("lifecycle_stage",),
}
GENERIC_CREATED_KEYS = ("created_time", "created_at", "createdate")
GENERIC_BAG_KEYS = ("fields", "custom_fields")


# ========================================
# FIELD HELPERS
# ========================================

def extract_path(data: Any, path: str) -> Any:
    """
    Read a value from nested dicts/lists using dot notation.

    "properties.email" -> data["properties"]["email"]
    "phones[0].number" -> data["phones"][0]["number"]
    Missing keys give None.
    """
    value = data
    for key in path.split("."):
        index = None
        if key.endswith("]") and "[" in key:
            key, index_str = key[:-1].split("[", 1)
            index = int(index_str)
        if not isinstance(value, dict):
            return None
        value = value.get(key)
        if index is not None:
            if not isinstance(value, list) or len(value) <= index:
                return None
            value = value[index]
    return value


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
        if value is None:
            return None
    text = str(value).strip()
    return text or None


def normalize_email(email: Any) -> Optional[str]:
    email = _clean(email)
    return email.lower() if email else None


def normalize_phone(phone: Any, default_region: str = "US") -> Optional[str]:
    """E.164 when the number parses and is valid, the original text otherwise."""
    phone = _clean(phone)
    if not phone:
        return None

    cleaned = re.sub(r"[\s\-\(\)\.]", "", phone)
    try:
        parsed = phonenumbers.parse(cleaned, default_region)
        if phonenumbers.is_valid_number(parsed):
            return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    except phonenumbers.NumberParseException:
        logger.debug(f"Unparseable phone number {hash_for_logging(phone)}")
    return phone


def normalize_url(url: Any) -> Optional[str]:
    url = _clean(url)
    if not url:
        return None
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url.rstrip("/")


def split_names(
    first_name: Optional[str],
    last_name: Optional[str],
    full_name: Optional[str]
) -> Dict[str, Optional[str]]:
    """Fill in whichever of first/last/full name is missing."""
    first_name = _clean(first_name)
    last_name = _clean(last_name)
    full_name = _clean(full_name)

    if full_name and not (first_name or last_name):
        parsed = HumanName(full_name)
        first_name = parsed.first or None
        last_name = parsed.last or None

    if not full_name and (first_name or last_name):
        full_name = " ".join(part for part in (first_name, last_name) if part)

    return {"first_name": first_name, "last_name": last_name, "full_name": full_name}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 strings or epoch milliseconds to naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    try:
        if isinstance(value, (int, float)) or str(value).isdigit():
            return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc).replace(tzinfo=None)
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_naive_utc(datetime.fromisoformat(text))
    except (ValueError, OverflowError, OSError):
        logger.debug(f"Unparseable timestamp: {value!r}")
        return None


def _parse_opt_in(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ("false", "no", "0", "n", "off")


# ========================================
# NORMALIZER
# ========================================

class LeadNormalizer:
    """Deterministic, side-effect free mapping of raw payloads to CanonicalLead."""

    def __init__(self, default_region: str = "US"):
        self.default_region = default_region

    def normalize(self, raw: Dict[str, Any], source_tag: str) -> CanonicalLead:
        raw = raw or {}
        if source_tag == SOURCE_HUBSPOT:
            values = self._map_hubspot(raw)
        elif source_tag == SOURCE_FACEBOOK:
            values = self._map_facebook(raw)
        elif source_tag == SOURCE_CALENDLY:
            values = self._map_calendly(raw)
        else:
            values = self._map_generic(raw)

        values.update(split_names(
            values.get("first_name"), values.get("last_name"), values.get("full_name")
        ))
        values["email"] = normalize_email(values.get("email"))
        values["phone"] = normalize_phone(values.get("phone"), self.default_region)
        values["website"] = normalize_url(values.get("website"))
        for key in ("external_id", "company", "job_title", "city", "state", "country",
                    "zip", "lead_source", "lifecycle_stage"):
            values[key] = _clean(values.get(key))

        values["lead_source"] = values["lead_source"] or self._default_lead_source(source_tag)
        values["source"] = source_tag or "generic"
        values["raw_data"] = raw

        lead = CanonicalLead(**values)
        logger.debug(
            f"Normalized {lead.source} lead {lead.external_id} ({hash_for_logging(lead.email)}), "
            f"{len(lead.fields)} extra fields"
        )
        return lead

    def validate(self, lead: CanonicalLead) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        if not lead.email:
            errors.append("Email is required")
        elif not EMAIL_PATTERN.match(lead.email):
            errors.append("Invalid email format")

        if not (lead.first_name or lead.last_name or lead.full_name):
            warnings.append("No name information provided")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    @staticmethod
    def _default_lead_source(source_tag: str) -> str:
        return {
            SOURCE_HUBSPOT: "HubSpot CRM",
            SOURCE_FACEBOOK: "Facebook Lead Ads",
            SOURCE_CALENDLY: "Calendly",
            SOURCE_ZAPIER: "Zapier",
        }.get(source_tag, source_tag or "Unknown")

    # ----------------------------------------
    # Source mappings
    # ----------------------------------------

    def _map_hubspot(self, contact: Dict[str, Any]) -> Dict[str, Any]:
        properties = contact.get("properties") or {}
        values: Dict[str, Any] = {"fields": {}}

        for name, value in properties.items():
            target = HUBSPOT_PROPERTY_MAP.get(name)
            if target:
                if value not in (None, "") and not values.get(target):
                    values[target] = value
            elif name not in HUBSPOT_METADATA_PROPERTIES and value not in (None, ""):
                values["fields"][name] = value

        values["external_id"] = contact.get("id") or properties.get("hs_object_id")
        values["created_time"] = parse_timestamp(properties.get("createdate") or contact.get("createdAt"))
        values["modified_time"] = parse_timestamp(
            properties.get("lastmodifieddate") or contact.get("updatedAt")
        )
        return values

    def _map_facebook(self, submission: Dict[str, Any]) -> Dict[str, Any]:
        values: Dict[str, Any] = {"fields": {}}

        for item in submission.get("field_data") or []:
            name = item.get("name")
            field_values = item.get("values") or []
            if not name or not field_values:
                continue
            value = field_values[0] if len(field_values) == 1 else field_values
            target = FACEBOOK_FIELD_MAP.get(name.lower())
            if target:
                values.setdefault(target, value)
            elif name.lower() in ("sms_opt_in", "sms_consent"):
                values["sms_opt_in"] = _parse_opt_in(value)
            else:
                values["fields"][name] = value

        for key in ("ad_id", "adset_id", "campaign_id", "form_id", "page_id", "platform"):
            if submission.get(key):
                values["fields"][key] = submission[key]

        values["external_id"] = submission.get("id") or submission.get("leadgen_id")
        values["created_time"] = parse_timestamp(submission.get("created_time"))
        return values

    def _map_calendly(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        invitee = payload.get("invitee") or payload
        values: Dict[str, Any] = {
            "email": invitee.get("email"),
            "first_name": invitee.get("first_name"),
            "last_name": invitee.get("last_name"),
            "full_name": invitee.get("name"),
            "phone": invitee.get("text_reminder_number"),
            "external_id": invitee.get("uri"),
            "created_time": parse_timestamp(invitee.get("created_at")),
            "fields": {},
        }

        answers = invitee.get("questions_and_answers") or []
        if answers:
            values["fields"]["questions_and_answers"] = answers
        tracking = {k: v for k, v in (invitee.get("tracking") or {}).items() if v}
        if tracking:
            values["fields"]["tracking"] = tracking
        event_type = extract_path(payload, "event_type.name")
        if event_type:
            values["fields"]["event_type"] = event_type
        return values

    def _map_generic(self, data: Dict[str, Any]) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        consumed = set()

        for target, aliases in GENERIC_ALIASES.items():
            for alias in aliases:
                value = data.get(alias)
                if value not in (None, ""):
                    values[target] = value
                    consumed.add(alias)
                    break

        for key in GENERIC_CREATED_KEYS:
            if data.get(key):
                values["created_time"] = parse_timestamp(data[key])
                consumed.add(key)
                break

        if "sms_opt_in" in data:
            values["sms_opt_in"] = _parse_opt_in(data["sms_opt_in"])
            consumed.add("sms_opt_in")

        fields: Dict[str, Any] = {}
        for bag_key in GENERIC_BAG_KEYS:
            if isinstance(data.get(bag_key), dict):
                fields.update(data[bag_key])
                consumed.add(bag_key)

        # Every alias counts as canonical even when a higher-priority one won
        known = {alias for aliases in GENERIC_ALIASES.values() for alias in aliases}
        for key, value in data.items():
            if key in consumed or key in known or value in (None, ""):
                continue
            fields[key] = value

        values["fields"] = fields
        return values
