"""
Status machines for the numbered stock documents.

Every document type is described by one ``Workflow`` entry in ``WORKFLOWS``.
The functions in this module only decide; they never touch the database.
Stamping, stock movements and persistence happen in the document services,
which run the ``side_effects`` named by the target state after a positive
decision.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from .base_service import (
    InvalidTransitionError,
    PreconditionFailedError,
    ValidationError,
    to_decimal,
)


VALIDATION_FAILED = "validation_failed"
INVALID_TRANSITION = "invalid_transition"
PRECONDITION_FAILED = "precondition_failed"


@dataclass(frozen=True)
class StateRule:
    next_states: FrozenSet[str] = frozenset()
    # Entry conditions, checked against the document when moving into this state
    required_fields: Tuple[str, ...] = ()
    line_requirements: Tuple[str, ...] = ()
    side_effects: Tuple[str, ...] = ()
    requires_approver: bool = False


@dataclass(frozen=True)
class Workflow:
    states: Dict[str, StateRule]
    initial: str
    editable: FrozenSet[str]
    deletable: FrozenSet[str]
    terminal: FrozenSet[str]
    status_field: str = "status"
    line_field: Optional[str] = None
    quantity_field: Optional[str] = None


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    error: Optional[str] = None
    reason: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self):
        return self.allowed

    def raise_if_denied(self):
        if self.allowed:
            return
        if self.error == VALIDATION_FAILED:
            raise ValidationError(self.reason, details=self.details)
        if self.error == INVALID_TRANSITION:
            raise InvalidTransitionError(
                self.reason,
                current=self.details.get("current_status"),
                requested=self.details.get("requested_status"),
            )
        raise PreconditionFailedError(self.reason, self.details)


ALLOWED = TransitionDecision(allowed=True)


def _approval_workflow(
    finished: str,
    required: Tuple[str, ...],
    finish_effects: Tuple[str, ...],
    line_field: str,
    quantity_field: str,
    line_requirements: Tuple[str, ...] = (),
) -> Workflow:
    return Workflow(
        states={
            "draft": StateRule(
                next_states=frozenset({"pending-approval", "cancelled", "rejected"}),
            ),
            "pending-approval": StateRule(
                next_states=frozenset({"approved", "rejected", "cancelled"}),
                required_fields=required,
                line_requirements=line_requirements,
            ),
            "approved": StateRule(
                next_states=frozenset({finished}),
                required_fields=required,
                line_requirements=line_requirements,
                side_effects=("stamp_approval",),
                requires_approver=True,
            ),
            finished: StateRule(
                required_fields=required,
                line_requirements=line_requirements,
                side_effects=finish_effects,
            ),
            "cancelled": StateRule(),
            "rejected": StateRule(requires_approver=True),
        },
        initial="draft",
        editable=frozenset({"draft", "pending-approval"}),
        deletable=frozenset({"draft"}),
        terminal=frozenset({finished, "cancelled", "rejected"}),
        line_field=line_field,
        quantity_field=quantity_field,
    )


WORKFLOWS: Dict[str, Workflow] = {
    "PurchaseOrder": _approval_workflow(
        finished="processed",
        required=("site", "ordered_items"),
        finish_effects=("stamp_processed", "receive_goods"),
        line_field="ordered_items",
        quantity_field="ordered_quantity",
        line_requirements=("supplier",),
    ),
    "InternalTransfer": _approval_workflow(
        finished="completed",
        required=("from_bin", "to_bin", "transferred_items"),
        finish_effects=("stamp_completion", "move_stock"),
        line_field="transferred_items",
        quantity_field="transferred_quantity",
    ),
    "StockAdjustment": _approval_workflow(
        finished="completed",
        required=("bin", "adjustment_type", "adjusted_items"),
        finish_effects=("stamp_completion", "apply_adjustment"),
        line_field="adjusted_items",
        quantity_field="adjusted_quantity",
    ),
    "InventoryCount": _approval_workflow(
        finished="completed",
        required=("bin", "counted_items"),
        finish_effects=("stamp_completion", "apply_count"),
        line_field="counted_items",
        quantity_field="counted_quantity",
    ),
    # Receiving needs no approval; completing books the received quantities
    "GoodsReceipt": Workflow(
        states={
            "draft": StateRule(next_states=frozenset({"completed", "cancelled"})),
            "completed": StateRule(
                required_fields=("receiving_bin", "received_items"),
                side_effects=("stamp_completion", "receive_stock"),
            ),
            "cancelled": StateRule(),
        },
        initial="draft",
        editable=frozenset({"draft"}),
        deletable=frozenset({"draft"}),
        terminal=frozenset({"completed", "cancelled"}),
        line_field="received_items",
        quantity_field="received_quantity",
    ),
    "DispatchLog": Workflow(
        states={
            "pending": StateRule(next_states=frozenset({"partial", "complete"})),
            "partial": StateRule(next_states=frozenset({"pending", "complete"})),
            "complete": StateRule(),
        },
        initial="pending",
        editable=frozenset({"pending", "partial"}),
        deletable=frozenset({"pending", "partial"}),
        terminal=frozenset({"complete"}),
        status_field="evidence_status",
        line_field="dispatched_items",
        quantity_field="dispatched_quantity",
    ),
}


def get_workflow(document_type: str) -> Workflow:
    try:
        return WORKFLOWS[document_type]
    except KeyError:
        raise ValueError(f"Unknown document type: {document_type}") from None


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    return False


def missing_fields(workflow: Workflow, rule: StateRule, document: Mapping[str, Any]) -> List[str]:
    missing = [name for name in rule.required_fields if _is_blank(document.get(name))]

    if rule.line_requirements and workflow.line_field:
        for index, line in enumerate(document.get(workflow.line_field) or []):
            if to_decimal(line.get(workflow.quantity_field)) <= Decimal("0"):
                continue
            for name in rule.line_requirements:
                if _is_blank(line.get(name)):
                    missing.append(f"{workflow.line_field}[{index}].{name}")
    return missing


def can_transition(
    current_status: str,
    requested_status: str,
    document_type: str,
    document: Optional[Mapping[str, Any]] = None,
) -> TransitionDecision:
    """
    Decide whether a document may move from ``current_status`` to
    ``requested_status``.

    ``document`` is a plain mapping of the document's relational fields and
    line items. When it is omitted only the status graph is consulted.
    """
    workflow = get_workflow(document_type)
    status_details = {
        "current_status": current_status,
        "requested_status": requested_status,
        "document_type": document_type,
    }

    if current_status in workflow.terminal:
        return TransitionDecision(
            allowed=False,
            error=PRECONDITION_FAILED,
            reason=f"{document_type} is {current_status} and can no longer be changed",
            details=status_details,
        )

    rule = workflow.states.get(current_status)
    target = workflow.states.get(requested_status)
    if rule is None or target is None or requested_status not in rule.next_states:
        return TransitionDecision(
            allowed=False,
            error=INVALID_TRANSITION,
            reason=f"Cannot move {document_type} from {current_status} to {requested_status}",
            details=status_details,
        )

    if document is not None:
        missing = missing_fields(workflow, target, document)
        if missing:
            return TransitionDecision(
                allowed=False,
                error=VALIDATION_FAILED,
                reason=f"Missing required fields: {', '.join(missing)}",
                details={**status_details, "missing_fields": missing},
            )

    return ALLOWED


def can_edit(current_status: str, document_type: str) -> TransitionDecision:
    workflow = get_workflow(document_type)
    if current_status in workflow.editable:
        return ALLOWED
    return TransitionDecision(
        allowed=False,
        error=PRECONDITION_FAILED,
        reason=f"Cannot edit a {document_type} that is {current_status}",
        details={"current_status": current_status, "document_type": document_type},
    )


def can_delete(current_status: str, document_type: str) -> TransitionDecision:
    workflow = get_workflow(document_type)
    if current_status in workflow.deletable:
        return ALLOWED
    return TransitionDecision(
        allowed=False,
        error=PRECONDITION_FAILED,
        reason=f"Cannot delete a {document_type} that is {current_status}",
        details={"current_status": current_status, "document_type": document_type},
    )
