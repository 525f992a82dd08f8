"""
Base interface for external lead sources.
All sources must implement this interface.
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
from datetime import datetime


class LeadSource(ABC):
    """
    Abstract base class for external systems leads are pulled from.

    Calls must be safe to repeat with overlapping windows; the reconciler
    relies on idempotent upserts to absorb re-delivered records.
    """

    source_tag: str = "generic"

    @abstractmethod
    async def test_connection(self) -> bool:
        """
        Test if connection/authentication works.

        Returns:
            True if connection successful, False otherwise
        """
        pass

    @abstractmethod
    async def fetch_recent(self, since: datetime, limit: int) -> List[Dict[str, Any]]:
        """
        Fetch records created or modified since a point in time.

        Args:
            since: Naive UTC lower bound (inclusive)
            limit: Max number of records to return

        Returns:
            List of raw records in the source's own format

        Raises:
            LeadSourceError: the source could not be queried
        """
        pass

    @abstractmethod
    async def fetch_by_id(self, external_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one raw record, or None if the source doesn't know it.

        Raises:
            LeadSourceError: the source could not be queried
        """
        pass
