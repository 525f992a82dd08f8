"""Inbound lead intake shared by webhooks, manual creation and polling."""

import logging
from typing import Dict, Any, Optional

from leadflow.exceptions import LeadValidationError
from leadflow.services.lead_normalizer import LeadNormalizer
from leadflow.services.tracking import generate_tracking_id, hash_for_logging
from leadflow.services.workflow_orchestrator import WorkflowOrchestrator
from leadflow.stores.base import LeadStore

logger = logging.getLogger(__name__)


class LeadIntakeService:
    """
    normalize -> validate -> upsert -> (created only) initialize workflow.

    Validation failures raise LeadValidationError before anything is written.
    Workflow initialization failures are logged and reported, never raised.
    """

    def __init__(
        self,
        lead_store: LeadStore,
        orchestrator: WorkflowOrchestrator,
        normalizer: Optional[LeadNormalizer] = None
    ):
        self.leads = lead_store
        self.orchestrator = orchestrator
        self.normalizer = normalizer or LeadNormalizer()

    async def ingest(
        self,
        raw: Dict[str, Any],
        source_tag: str,
        tracking_id: Optional[str] = None
    ) -> Dict[str, Any]:
        tracking_id = tracking_id or generate_tracking_id()

        canonical = self.normalizer.normalize(raw, source_tag)
        validation = self.normalizer.validate(canonical)
        if not validation.is_valid:
            logger.warning(
                f"[{tracking_id}] Rejected {source_tag} lead {canonical.external_id}: "
                f"{'; '.join(validation.errors)}"
            )
            raise LeadValidationError(validation.errors)
        for warning in validation.warnings:
            logger.info(f"[{tracking_id}] {source_tag} lead {hash_for_logging(canonical.email)}: {warning}")

        result = await self.leads.upsert(canonical)
        lead = result.lead
        logger.info(
            f"[{tracking_id}] Lead {lead.id} {result.operation} from {source_tag} "
            f"({hash_for_logging(lead.email)})"
            + (f", matched by {result.matched_by}" if result.matched_by else "")
        )

        workflow_initialized = False
        if result.created:
            workflow_initialized = await self.orchestrator.initialize_workflow(lead.id, tracking_id)
            if not workflow_initialized:
                logger.error(f"[{tracking_id}] Workflow initialization failed for new lead {lead.id}")

        return {
            "lead_id": lead.id,
            "operation": result.operation,
            "workflow_initialized": workflow_initialized,
            "tracking_id": tracking_id,
        }
