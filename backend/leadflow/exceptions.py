"""Exceptions raised by leadflow services."""

from typing import List, Optional


class LeadflowError(Exception):
    """Base class for all leadflow errors."""


class LeadValidationError(LeadflowError):
    """Inbound lead payload is malformed or missing required fields."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class LeadNotFoundError(LeadflowError):
    """Referenced lead does not exist."""

    def __init__(self, lead_id):
        self.lead_id = lead_id
        super().__init__(f"Lead not found: {lead_id}")


class DuplicateAgentError(LeadflowError):
    """An agent with this email already exists."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Agent already exists: {email}")


class StepExecutionError(LeadflowError):
    """A workflow step action failed; the retry policy decides what happens next."""

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(f"{step}: {message}")


class WebhookSignatureError(LeadflowError):
    """Webhook signature missing or does not match."""


class LeadSourceError(LeadflowError):
    """External lead source (CRM, ads API) returned an error."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        self.source = source
        self.status_code = status_code
        super().__init__(f"{source}: {message}")
