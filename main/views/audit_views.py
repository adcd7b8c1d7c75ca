from django.views.decorators.csrf import csrf_exempt
from rest_framework.decorators import api_view

from main.helpers.require_login import role_required
from main.helpers.response import APIResponse
from main.models import AppUser
from main.services.audit_service import AuditService


@csrf_exempt
@api_view(["GET"])
@role_required(AppUser.RoleChoices.ADMIN, AppUser.RoleChoices.AUDITOR)
def activity(request):
    success = request.GET.get('success')
    try:
        page = int(request.GET.get('page', 1))
        per_page = int(request.GET.get('per_page', 50))
    except ValueError:
        return APIResponse.error(message='page and per_page must be integers')

    result = AuditService.list(
        document_type=request.GET.get('document_type'),
        document_id=request.GET.get('document_id'),
        actor_id=request.GET.get('actor'),
        success=None if success is None else success.lower() == 'true',
        page=page,
        per_page=per_page,
    )
    return APIResponse.success(data=result)
