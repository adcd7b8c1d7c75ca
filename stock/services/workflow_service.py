"""
Shared plumbing for the numbered stock documents.

A concrete service names its model, document type, line relation and site
lookups, and implements ``serialize``, ``site_ids``, ``_apply_fields`` and
``_replace_lines``. Status changes always go through
``stock.services.transitions``; the side effects listed for the target state
are dispatched to ``_effect_<name>`` methods on the service.
"""
import logging
from typing import Dict, Any, List

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction, IntegrityError
from django.db.models import Q
from django.utils import timezone

from main.services.access_service import AccessService
from stock.services import numbering
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, ConflictError, NotFoundError,
)
from stock.services.transitions import get_workflow, can_transition, can_edit, can_delete

logger = logging.getLogger(__name__)


class DocumentWorkflowService(BaseService):
    document_type: str = None
    number_field: str = None
    line_relation: str = None
    site_lookups: tuple = ()
    select_related: tuple = ()
    actions: Dict[str, str] = {}

    # ==================== LOOKUPS AND ACCESS ====================

    @classmethod
    def workflow(cls):
        return get_workflow(cls.document_type)

    @classmethod
    def status_of(cls, obj) -> str:
        return getattr(obj, cls.workflow().status_field)

    @classmethod
    def base_queryset(cls):
        queryset = cls.model.objects.all()
        if cls.select_related:
            queryset = queryset.select_related(*cls.select_related)
        return queryset

    @classmethod
    def site_filter(cls, site_id) -> Q:
        condition = Q()
        for lookup in cls.site_lookups:
            condition |= Q(**{lookup: site_id})
        return condition

    @classmethod
    def site_ids(cls, obj) -> List[str]:
        """Sites the document belongs to."""
        raise NotImplementedError

    @classmethod
    def check_access(cls, actor, obj):
        AccessService.require_actor(actor)
        if actor.is_multi_site:
            return
        for site_id in cls.site_ids(obj):
            AccessService.require_site_access(actor, site_id)

    @classmethod
    def get_for_actor(cls, actor, document_id, for_update: bool = False):
        queryset = cls.base_queryset()
        if for_update:
            queryset = queryset.select_for_update(of=("self",))
        try:
            obj = queryset.get(id=document_id)
        except (cls.model.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError(cls.document_type, document_id)
        cls.check_access(actor, obj)
        return obj

    # ==================== READS ====================

    @classmethod
    def serialize(cls, obj) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def serialize_brief(cls, obj) -> Dict[str, Any]:
        workflow = cls.workflow()
        return {
            "id": str(obj.id),
            "number": getattr(obj, cls.number_field),
            workflow.status_field: cls.status_of(obj),
            "created_at": obj.created_at.isoformat(),
        }

    @classmethod
    def list(cls, actor, status: str = None, site_id: str = None,
             page: int = 1, per_page: int = 20) -> Dict[str, Any]:
        AccessService.require_actor(actor)
        queryset = cls.base_queryset()

        if not actor.is_multi_site:
            if actor.associated_site_id is None:
                queryset = queryset.none()
            else:
                queryset = queryset.filter(cls.site_filter(actor.associated_site_id))

        if status:
            queryset = queryset.filter(**{cls.workflow().status_field: status})
        if site_id:
            queryset = queryset.filter(cls.site_filter(site_id))

        documents, pagination = paginate_queryset(queryset.distinct(), page, per_page)
        return success_response({
            "documents": [cls.serialize(doc) for doc in documents],
            "pagination": pagination,
        })

    @classmethod
    def get(cls, actor, document_id) -> Dict[str, Any]:
        return success_response({"document": cls.serialize(cls.get_for_actor(actor, document_id))})

    @classmethod
    def preview_number(cls) -> Dict[str, Any]:
        return success_response({
            "document_type": cls.document_type,
            "next_number": numbering.next_number(cls.document_type),
        })

    # ==================== WRITES ====================

    @classmethod
    def _save_new(cls, obj):
        """Assign the next number and insert; a duplicate number is a conflict."""
        setattr(obj, cls.number_field, numbering.next_number(cls.document_type))
        try:
            with transaction.atomic():
                obj.save(force_insert=True)
        except IntegrityError:
            number = getattr(obj, cls.number_field)
            logger.warning("%s number %s already taken", cls.document_type, number)
            raise ConflictError(
                f"{cls.document_type} number {number} is already in use, please retry",
                {"field": cls.number_field, "number": number}
            )
        return obj

    @classmethod
    def _new_instance(cls, actor, data: Dict[str, Any]):
        raise NotImplementedError

    @classmethod
    @transaction.atomic
    def create(cls, actor, data: Dict[str, Any]) -> Dict[str, Any]:
        AccessService.require_actor(actor)
        data = dict(data or {})
        workflow = cls.workflow()
        # New documents always start in the initial state
        data.pop(workflow.status_field, None)

        obj = cls._new_instance(actor, data)
        setattr(obj, workflow.status_field, workflow.initial)
        cls._apply_fields(obj, data, actor)
        cls.check_access(actor, obj)
        cls._save_new(obj)

        cls._replace_lines(obj, data.get(cls.line_relation) or [], actor)
        cls._refresh_derived(obj, actor)
        obj.save()

        logger.info("%s %s created by %s", cls.document_type, getattr(obj, cls.number_field), actor.email)
        return success_response({"document": cls.serialize(obj)}, f"{cls.document_type} created")

    @classmethod
    def _apply_fields(cls, obj, data: Dict[str, Any], actor):
        raise NotImplementedError

    @classmethod
    def _replace_lines(cls, obj, lines: List[Dict[str, Any]], actor):
        raise NotImplementedError

    @classmethod
    def _refresh_derived(cls, obj, actor):
        """Hook for documents with totals or stock effects derived from their lines."""

    @classmethod
    @transaction.atomic
    def update(cls, actor, document_id, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply field edits, then a status change if one was requested.

        Field edits need an editable status. A status value different from the
        current one is handled exactly like the matching action.
        """
        obj = cls.get_for_actor(actor, document_id, for_update=True)
        workflow = cls.workflow()
        current = cls.status_of(obj)

        if current in workflow.terminal:
            can_edit(current, cls.document_type).raise_if_denied()

        data = dict(data or {})
        requested = data.pop(workflow.status_field, None)
        if requested == current:
            requested = None

        if data:
            can_edit(current, cls.document_type).raise_if_denied()
            cls._apply_fields(obj, data, actor)
            cls.check_access(actor, obj)
            obj.save()
            if cls.line_relation in data:
                cls._replace_lines(obj, data[cls.line_relation] or [], actor)
            cls._refresh_derived(obj, actor)
            obj.save()

        if requested:
            return cls.transition(actor, obj.id, requested)

        logger.info("%s %s updated by %s", cls.document_type, getattr(obj, cls.number_field), actor.email)
        return success_response({"document": cls.serialize(obj)}, f"{cls.document_type} updated")

    @classmethod
    def perform_action(cls, actor, document_id, action: str, payload: Dict[str, Any] = None) -> Dict[str, Any]:
        if action not in cls.actions:
            raise ValidationError(
                f"Unknown action '{action}'. Valid: {sorted(cls.actions)}",
                "action",
                {"valid_actions": sorted(cls.actions)}
            )
        return cls.transition(actor, document_id, cls.actions[action], payload)

    @classmethod
    @transaction.atomic
    def transition(cls, actor, document_id, requested: str, payload: Dict[str, Any] = None) -> Dict[str, Any]:
        obj = cls.get_for_actor(actor, document_id, for_update=True)
        workflow = cls.workflow()
        current = cls.status_of(obj)

        target = workflow.states.get(requested)
        if target is not None and target.requires_approver and current not in workflow.terminal:
            AccessService.require_approver(actor)

        decision = can_transition(current, requested, cls.document_type, cls.guard_snapshot(obj))
        decision.raise_if_denied()

        setattr(obj, workflow.status_field, requested)
        for effect in target.side_effects:
            getattr(cls, f"_effect_{effect.replace('-', '_')}")(obj, actor, payload or {})
        obj.save()

        logger.info(
            "%s %s moved %s -> %s by %s",
            cls.document_type, getattr(obj, cls.number_field), current, requested, actor.email
        )
        return success_response(
            {"document": cls.serialize(obj), "previous_status": current},
            f"{cls.document_type} is now {requested}"
        )

    @classmethod
    @transaction.atomic
    def delete(cls, actor, document_id) -> Dict[str, Any]:
        obj = cls.get_for_actor(actor, document_id, for_update=True)
        can_delete(cls.status_of(obj), cls.document_type).raise_if_denied()

        number = getattr(obj, cls.number_field)
        cls._before_delete(obj, actor)
        obj.delete()

        logger.info("%s %s deleted by %s", cls.document_type, number, actor.email)
        return success_response({"id": str(document_id), "number": number}, f"{cls.document_type} deleted")

    @classmethod
    def _before_delete(cls, obj, actor):
        """Hook for documents that must undo stock effects."""

    # ==================== GUARD INPUT ====================

    @classmethod
    def guard_snapshot(cls, obj) -> Dict[str, Any]:
        """Plain mapping of the fields the status table checks."""
        workflow = cls.workflow()
        names = set()
        for rule in workflow.states.values():
            names.update(rule.required_fields)

        snapshot = {}
        for name in names:
            if name == workflow.line_field:
                snapshot[name] = [cls._line_snapshot(line) for line in getattr(obj, name).all()]
                continue
            field = obj._meta.get_field(name)
            snapshot[name] = getattr(obj, field.attname)
        if workflow.line_field and workflow.line_field not in snapshot:
            snapshot[workflow.line_field] = [cls._line_snapshot(line) for line in getattr(obj, workflow.line_field).all()]
        return snapshot

    @staticmethod
    def _line_snapshot(line) -> Dict[str, Any]:
        return {field.name: getattr(line, field.attname) for field in line._meta.concrete_fields}

    # ==================== COMMON SIDE EFFECTS ====================

    @classmethod
    def _effect_stamp_approval(cls, obj, actor, payload):
        obj.approved_by = actor
        obj.approved_at = timezone.now()

    @classmethod
    def _effect_stamp_completion(cls, obj, actor, payload):
        if hasattr(obj, "completed_by"):
            obj.completed_by = actor
        obj.completed_at = timezone.now()

    # ==================== PAYLOAD HELPERS ====================

    @staticmethod
    def _lines_payload(value, field: str) -> List[Dict[str, Any]]:
        if value is None:
            return []
        if not isinstance(value, list) or not all(isinstance(line, dict) for line in value):
            raise ValidationError(f"{field} must be a list of objects", field)
        return value

