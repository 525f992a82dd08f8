"""
HubSpot CRM v3 contacts source.
"""
import httpx
import logging
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone

from leadflow.exceptions import LeadSourceError
from leadflow.services.lead_normalizer import SOURCE_HUBSPOT
from .base import LeadSource

logger = logging.getLogger(__name__)


CONTACT_PROPERTIES = [
    "email", "firstname", "lastname", "phone", "mobilephone", "company",
    "jobtitle", "website", "city", "state", "country", "zip",
    "createdate", "lastmodifieddate", "hs_lead_status", "lifecyclestage",
    "lead_source", "hs_analytics_source", "hs_analytics_source_data_1",
    "hs_analytics_source_data_2",
]

# Only prospects, existing customers are left alone
LEAD_LIFECYCLE_STAGES = ["lead", "marketingqualifiedlead", "salesqualifiedlead", "subscriber"]

# Search API page size ceiling
MAX_PAGE_SIZE = 100


class HubSpotLeadSource(LeadSource):
    """Contacts pulled through the CRM search API with a private app token."""

    source_tag = SOURCE_HUBSPOT
    BASE_URL = "https://api.hubapi.com"

    def __init__(
        self,
        access_token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.access_token = access_token
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers=self.headers,
            timeout=self.timeout,
            transport=self.transport
        )

    @staticmethod
    def _to_epoch_ms(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return str(int(value.timestamp() * 1000))

    def _build_search(self, since: datetime, page_size: int, after: Optional[str]) -> Dict[str, Any]:
        body = {
            "filterGroups": [{
                "filters": [
                    {"propertyName": "createdate", "operator": "GTE", "value": self._to_epoch_ms(since)},
                    {"propertyName": "lifecyclestage", "operator": "IN", "values": LEAD_LIFECYCLE_STAGES},
                ]
            }],
            "properties": CONTACT_PROPERTIES,
            "sorts": [{"propertyName": "createdate", "direction": "ASCENDING"}],
            "limit": page_size,
        }
        if after:
            body["after"] = after
        return body

    async def test_connection(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/crm/v3/objects/contacts", params={"limit": 1})
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"HubSpot connection test failed: {e}")
            return False

    async def fetch_recent(self, since: datetime, limit: int) -> List[Dict[str, Any]]:
        contacts: List[Dict[str, Any]] = []
        after = None

        try:
            async with self._client() as client:
                while len(contacts) < limit:
                    page_size = min(MAX_PAGE_SIZE, limit - len(contacts))
                    response = await client.post(
                        "/crm/v3/objects/contacts/search",
                        json=self._build_search(since, page_size, after)
                    )
                    if response.status_code != 200:
                        raise LeadSourceError(
                            self.source_tag,
                            f"search returned {response.status_code}: {response.text[:200]}",
                            status_code=response.status_code
                        )

                    data = response.json()
                    contacts.extend(data.get("results", []))
                    after = (data.get("paging") or {}).get("next", {}).get("after")
                    if not after:
                        break
        except httpx.HTTPError as e:
            raise LeadSourceError(self.source_tag, f"search request failed: {e}")

        logger.info(f"Fetched {len(contacts)} HubSpot contacts since {since.isoformat()}")
        return contacts[:limit]

    async def fetch_by_id(self, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"/crm/v3/objects/contacts/{external_id}",
                    params={"properties": ",".join(CONTACT_PROPERTIES)}
                )
        except httpx.HTTPError as e:
            raise LeadSourceError(self.source_tag, f"contact request failed: {e}")

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise LeadSourceError(
                self.source_tag,
                f"contact {external_id} returned {response.status_code}",
                status_code=response.status_code
            )
        return response.json()
