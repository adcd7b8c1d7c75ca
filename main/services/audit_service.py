import logging
from threading import Thread

import requests
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction
from django.utils import timezone

from ..models import AuditLog
from stock.services.base_service import paginate_queryset, success_response

logger = logging.getLogger(__name__)


class AuditService:
    """
    Fire-and-forget activity log.

    ``record`` never raises: a broken audit trail must not fail the request
    that produced the entry.
    """

    @classmethod
    def record(cls, action, description='', document_type='', document_id=None,
               actor_id=None, success=True, details=None):
        entry = {
            'timestamp': timezone.now().isoformat(),
            'action': action,
            'description': description or '',
            'document_type': document_type or '',
            'document_id': str(document_id) if document_id else '',
            'actor_id': str(actor_id) if actor_id else '',
            'success': bool(success),
            'details': details or {},
        }

        try:
            with transaction.atomic():
                AuditLog.objects.create(
                    action=entry['action'],
                    description=entry['description'],
                    document_type=entry['document_type'],
                    document_id=entry['document_id'],
                    actor_id=entry['actor_id'],
                    success=entry['success'],
                    details=entry['details'],
                )
        except Exception as e:
            logger.error("Audit log write failed for %s %s: %s", action, entry['document_id'], e)

        sink_url = settings.CATERFLOW.get('AUDIT_SINK_URL')
        if sink_url:
            Thread(target=cls._send_to_sink, args=(sink_url, entry), daemon=True).start()

        return entry

    @staticmethod
    def _send_to_sink(url, entry):
        timeout = settings.CATERFLOW.get('AUDIT_SINK_TIMEOUT', 5)
        try:
            response = requests.post(
                url,
                data=DjangoJSONEncoder().encode(entry),
                headers={'Content-Type': 'application/json'},
                timeout=timeout,
            )
            if response.status_code >= 400:
                logger.warning("Audit sink rejected entry: %s - %s", response.status_code, response.text[:200])
        except requests.exceptions.RequestException as e:
            logger.warning("Audit sink request failed: %s", e)

    @classmethod
    def list(cls, document_type=None, document_id=None, actor_id=None, success=None,
             page=1, per_page=50):
        queryset = AuditLog.objects.all()
        if document_type:
            queryset = queryset.filter(document_type=document_type)
        if document_id:
            queryset = queryset.filter(document_id=document_id)
        if actor_id:
            queryset = queryset.filter(actor_id=actor_id)
        if success is not None:
            queryset = queryset.filter(success=success)

        items, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            'items': [cls.serialize(entry) for entry in items],
            'pagination': pagination,
        })

    @staticmethod
    def serialize(entry):
        return {
            'id': entry.id,
            'timestamp': entry.timestamp.isoformat(),
            'action': entry.action,
            'description': entry.description,
            'document_type': entry.document_type,
            'document_id': entry.document_id or None,
            'actor_id': entry.actor_id or None,
            'success': entry.success,
            'details': entry.details,
        }
