"""
External lead sources.
"""
from .base import LeadSource
from .hubspot import HubSpotLeadSource
from .facebook import FacebookLeadSource

__all__ = ["LeadSource", "HubSpotLeadSource", "FacebookLeadSource"]
