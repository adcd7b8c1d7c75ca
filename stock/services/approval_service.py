"""
Approval Service - documents waiting for an approver, across document types.
"""
import logging
from typing import Dict, Any

from main.services.access_service import AccessService
from stock.services.adjustment_service import AdjustmentService
from stock.services.base_service import BaseService, ValidationError, success_response, decimal_str
from stock.services.count_service import CountService
from stock.services.purchase_service import PurchaseOrderService
from stock.services.transfer_service import TransferService

logger = logging.getLogger(__name__)

PENDING_APPROVAL = "pending-approval"

APPROVAL_TITLES = {
    PurchaseOrderService: "Approve Purchase Order",
    TransferService: "Approve Internal Transfer",
    AdjustmentService: "Approve Stock Adjustment",
    CountService: "Approve Bin Count",
}


class ApprovalService(BaseService):

    @classmethod
    def serialize_entry(cls, service, document) -> Dict[str, Any]:
        brief = service.serialize_brief(document)
        total = getattr(document, "total_amount", None)
        return {
            "document_type": service.document_type,
            "title": APPROVAL_TITLES[service],
            "id": brief["id"],
            "number": brief["number"],
            "status": service.status_of(document),
            "sites": service.site_ids(document),
            "total_amount": decimal_str(total) if total is not None else None,
            "created_at": brief["created_at"],
        }

    @classmethod
    def pending(cls, actor, document_type: str = None) -> Dict[str, Any]:
        """
        Pending-approval documents the actor may decide on, newest first.

        Multi-site approvers see every site; a site manager only sees
        documents touching their own site.
        """
        AccessService.require_approver(actor)

        services = [
            service for service in APPROVAL_TITLES
            if not document_type or service.document_type == document_type
        ]
        if not services:
            valid = [service.document_type for service in APPROVAL_TITLES]
            raise ValidationError(
                f"Unknown document type. Valid: {valid}", "document_type", {"valid_types": valid}
            )

        pending = []
        for service in services:
            queryset = service.base_queryset().filter(**{service.workflow().status_field: PENDING_APPROVAL})
            if not actor.is_multi_site:
                if actor.associated_site_id is None:
                    continue
                queryset = queryset.filter(service.site_filter(actor.associated_site_id)).distinct()
            pending.extend((document.created_at, service, document) for document in queryset)

        pending.sort(key=lambda entry: entry[0], reverse=True)
        logger.debug("%d document(s) awaiting approval for %s", len(pending), actor.email)
        return success_response({
            "approvals": [cls.serialize_entry(service, document) for _, service, document in pending],
            "total": len(pending),
        })
