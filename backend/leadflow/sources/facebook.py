"""
Facebook Lead Ads source (Graph API).

Webhook deliveries only carry a leadgen_id, so the full submission is read
with fetch_by_id. Polling walks the configured lead forms.
"""
import httpx
import json
import logging
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone

from leadflow.exceptions import LeadSourceError
from leadflow.services.lead_normalizer import SOURCE_FACEBOOK
from .base import LeadSource

logger = logging.getLogger(__name__)

LEAD_FIELDS = "id,created_time,field_data,ad_id,adset_id,campaign_id,form_id,platform"


class FacebookLeadSource(LeadSource):

    source_tag = SOURCE_FACEBOOK
    BASE_URL = "https://graph.facebook.com/v18.0"

    def __init__(
        self,
        page_access_token: str,
        form_ids: Optional[List[str]] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.page_access_token = page_access_token
        self.form_ids = form_ids or []
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.BASE_URL, timeout=self.timeout, transport=self.transport)

    def _error(self, response: httpx.Response, what: str) -> LeadSourceError:
        try:
            message = response.json().get("error", {}).get("message", response.text)
        except ValueError:
            message = response.text
        return LeadSourceError(
            self.source_tag,
            f"{what} returned {response.status_code}: {message}",
            status_code=response.status_code
        )

    async def test_connection(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/me", params={"access_token": self.page_access_token})
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Facebook connection test failed: {e}")
            return False

    async def fetch_by_id(self, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"/{external_id}",
                    params={"access_token": self.page_access_token, "fields": LEAD_FIELDS}
                )
        except httpx.HTTPError as e:
            raise LeadSourceError(self.source_tag, f"lead request failed: {e}")

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise self._error(response, f"lead {external_id}")
        return response.json()

    async def fetch_recent(self, since: datetime, limit: int) -> List[Dict[str, Any]]:
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        filtering = json.dumps([{
            "field": "time_created",
            "operator": "GREATER_THAN_OR_EQUAL",
            "value": int(since.timestamp()),
        }])

        leads: List[Dict[str, Any]] = []
        try:
            async with self._client() as client:
                for form_id in self.form_ids:
                    if len(leads) >= limit:
                        break
                    response = await client.get(
                        f"/{form_id}/leads",
                        params={
                            "access_token": self.page_access_token,
                            "fields": LEAD_FIELDS,
                            "filtering": filtering,
                            "limit": limit - len(leads),
                        }
                    )
                    if response.status_code != 200:
                        raise self._error(response, f"form {form_id} leads")
                    leads.extend(response.json().get("data", []))
        except httpx.HTTPError as e:
            raise LeadSourceError(self.source_tag, f"form leads request failed: {e}")

        return leads[:limit]
