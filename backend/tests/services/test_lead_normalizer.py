# tests/services/test_lead_normalizer.py
"""
Tests for LeadNormalizer and its field helpers.

Coverage:
- HubSpot, Facebook Lead Ads, Calendly and generic payload mapping
- Unmapped fields preserved in `fields`
- Email/phone/URL/name/timestamp normalization
- Validation errors and warnings
"""

import pytest
from datetime import datetime

from leadflow.services.lead_normalizer import (
    LeadNormalizer,
    extract_path,
    normalize_email,
    normalize_phone,
    normalize_url,
    parse_timestamp,
    split_names,
)


@pytest.fixture
def normalizer():
    return LeadNormalizer()


# ============================================================================
# HELPERS
# ============================================================================

class TestFieldHelpers:

    def test_extract_path(self):
        data = {"properties": {"email": "a@b.co"}, "phones": [{"number": "1"}, {"number": "2"}]}

        assert extract_path(data, "properties.email") == "a@b.co"
        assert extract_path(data, "phones[1].number") == "2"
        assert extract_path(data, "phones[5].number") is None
        assert extract_path(data, "missing.key") is None

    def test_normalize_email(self):
        assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"
        assert normalize_email("") is None
        assert normalize_email(None) is None

    def test_normalize_phone_to_e164(self):
        assert normalize_phone("(650) 253-0000") == "+16502530000"
        assert normalize_phone("+44 20 7183 8750") == "+442071838750"

    def test_unparseable_phone_kept_as_is(self):
        assert normalize_phone("call me maybe") == "call me maybe"
        assert normalize_phone("  ") is None

    def test_normalize_url(self):
        assert normalize_url("acme.io/") == "https://acme.io"
        assert normalize_url("http://acme.io") == "http://acme.io"
        assert normalize_url(None) is None

    def test_split_full_name(self):
        names = split_names(None, None, "Dr. Juan Q. Xavier de la Vega")
        assert names["first_name"] == "Juan"
        assert names["last_name"] == "de la Vega"

    def test_builds_full_name(self):
        assert split_names("Jane", "Doe", None)["full_name"] == "Jane Doe"
        assert split_names("Jane", None, None)["full_name"] == "Jane"

    def test_parse_timestamp(self):
        assert parse_timestamp("2024-01-15T09:30:00.000Z") == datetime(2024, 1, 15, 9, 30)
        assert parse_timestamp("2024-01-15T11:30:00+02:00") == datetime(2024, 1, 15, 9, 30)
        assert parse_timestamp("1705311000000") == datetime(2024, 1, 15, 9, 30)
        assert parse_timestamp(1705311000000) == datetime(2024, 1, 15, 9, 30)
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None


# ============================================================================
# SOURCE MAPPINGS
# ============================================================================

class TestHubSpotMapping:

    def test_maps_contact_properties(self, normalizer):
        contact = {
            "id": "501",
            "properties": {
                "email": "Ana@Example.com",
                "firstname": "Ana",
                "lastname": "Lima",
                "mobilephone": "650-253-0000",
                "company": "Acme",
                "jobtitle": "CTO",
                "website": "acme.io",
                "lifecyclestage": "lead",
                "createdate": "2024-01-15T09:30:00Z",
                "hs_object_id": "501",
                "hs_analytics_source": "ORGANIC_SEARCH",
            },
        }

        lead = normalizer.normalize(contact, "hubspot_crm")

        assert lead.source == "hubspot_crm"
        assert lead.external_id == "501"
        assert lead.email == "ana@example.com"
        assert lead.full_name == "Ana Lima"
        assert lead.phone == "+16502530000"
        assert lead.job_title == "CTO"
        assert lead.website == "https://acme.io"
        assert lead.lifecycle_stage == "lead"
        assert lead.lead_source == "HubSpot CRM"
        assert lead.created_time == datetime(2024, 1, 15, 9, 30)
        assert lead.fields == {"hs_analytics_source": "ORGANIC_SEARCH"}
        assert lead.raw_data == contact

    def test_phone_preferred_over_mobile(self, normalizer):
        contact = {"id": "1", "properties": {"email": "a@b.co", "phone": "650-253-0000", "mobilephone": "415-555-0100"}}

        assert normalizer.normalize(contact, "hubspot_crm").phone == "+16502530000"


class TestFacebookMapping:

    def test_maps_field_data(self, normalizer):
        submission = {
            "id": "fb-777",
            "created_time": "2024-01-15T09:30:00+0000",
            "ad_id": "ad-1",
            "form_id": "form-9",
            "field_data": [
                {"name": "email", "values": ["lee@example.com"]},
                {"name": "full_name", "values": ["Lee Park"]},
                {"name": "phone_number", "values": ["+16502530000"]},
                {"name": "budget", "values": ["10k-50k"]},
                {"name": "sms_opt_in", "values": ["no"]},
            ],
        }

        lead = normalizer.normalize(submission, "facebook_lead_ads")

        assert lead.external_id == "fb-777"
        assert lead.email == "lee@example.com"
        assert lead.first_name == "Lee"
        assert lead.last_name == "Park"
        assert lead.sms_opt_in is False
        assert lead.lead_source == "Facebook Lead Ads"
        assert lead.fields["budget"] == "10k-50k"
        assert lead.fields["ad_id"] == "ad-1"
        assert lead.fields["form_id"] == "form-9"


class TestCalendlyMapping:

    def test_maps_nested_invitee(self, normalizer):
        payload = {
            "invitee": {
                "uri": "https://api.calendly.com/invitees/INV1",
                "email": "kim@example.com",
                "name": "Kim Tran",
                "text_reminder_number": "+16502530000",
                "questions_and_answers": [{"question": "Team size?", "answer": "12"}],
            },
            "event_type": {"name": "Intro Call"},
        }

        lead = normalizer.normalize(payload, "calendly")

        assert lead.external_id == "https://api.calendly.com/invitees/INV1"
        assert lead.first_name == "Kim"
        assert lead.phone == "+16502530000"
        assert lead.fields["event_type"] == "Intro Call"
        assert lead.fields["questions_and_answers"][0]["answer"] == "12"

    def test_maps_flat_payload(self, normalizer):
        lead = normalizer.normalize({"email": "kim@example.com", "name": "Kim"}, "calendly")

        assert lead.email == "kim@example.com"
        assert lead.first_name == "Kim"


class TestGenericMapping:

    def test_aliases_and_extra_fields(self, normalizer):
        payload = {
            "email_address": "pat@example.com",
            "name": "Pat Quinn",
            "mobile": "650 253 0000",
            "organization": "Quinn LLC",
            "utm_campaign": "spring",
            "fields": {"score": 42},
        }

        lead = normalizer.normalize(payload, "zapier")

        assert lead.source == "zapier"
        assert lead.email == "pat@example.com"
        assert lead.first_name == "Pat"
        assert lead.company == "Quinn LLC"
        assert lead.phone == "+16502530000"
        assert lead.lead_source == "Zapier"
        assert lead.fields == {"score": 42, "utm_campaign": "spring"}

    def test_explicit_lead_source_kept(self, normalizer):
        lead = normalizer.normalize({"email": "a@b.co", "lead_source": "Webinar"}, "manual")

        assert lead.lead_source == "Webinar"


# ============================================================================
# VALIDATION
# ============================================================================

class TestValidation:

    def test_valid_lead(self, normalizer):
        result = normalizer.validate(normalizer.normalize({"email": "a@b.co", "name": "A B"}, "manual"))

        assert result.is_valid is True
        assert result.errors == []
        assert result.warnings == []

    def test_missing_email(self, normalizer):
        result = normalizer.validate(normalizer.normalize({"name": "No Email"}, "manual"))

        assert result.is_valid is False
        assert result.errors == ["Email is required"]

    def test_malformed_email(self, normalizer):
        result = normalizer.validate(normalizer.normalize({"email": "nobody@nowhere"}, "manual"))

        assert result.errors == ["Invalid email format"]

    def test_missing_name_is_only_a_warning(self, normalizer):
        result = normalizer.validate(normalizer.normalize({"email": "a@b.co"}, "manual"))

        assert result.is_valid is True
        assert result.warnings == ["No name information provided"]
