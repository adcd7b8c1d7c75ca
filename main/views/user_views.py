import logging

from django.db import DatabaseError
from django.views.decorators.csrf import csrf_exempt
from rest_framework.decorators import api_view

from main.helpers.request import parse_json_body
from main.helpers.require_login import user_required
from main.helpers.response import APIResponse
from main.models import AppUser
from main.services.access_service import AccessService
from main.services.audit_service import AuditService
from main.services.user_service import UserService
from stock.services.base_service import ServiceError, UpstreamError

logger = logging.getLogger(__name__)


def _int_param(request, name, default):
    try:
        return int(request.GET.get(name, default))
    except (TypeError, ValueError):
        return default


def _run(request, action, description, document_id, call):
    try:
        result = call()
    except ServiceError as e:
        AuditService.record(action, description, 'AppUser', document_id, request.user.id,
                            success=False, details={'error': e.code})
        raise
    except DatabaseError as e:
        logger.error("User %s failed: %s", action, e)
        AuditService.record(action, description, 'AppUser', document_id, request.user.id,
                            success=False, details={'error': 'upstream_failure'})
        raise UpstreamError() from e

    user_id = result.get('user', {}).get('id', document_id)
    AuditService.record(action, description, 'AppUser', user_id, request.user.id)
    return result


@csrf_exempt
@api_view(["GET", "POST"])
@user_required
def users(request):
    try:
        AccessService.require_admin(request.user)

        if request.method == 'GET':
            is_active = request.GET.get('is_active')
            result = UserService.list(
                search=request.GET.get('search'),
                role=request.GET.get('role'),
                site_id=request.GET.get('site'),
                is_active=None if is_active is None else is_active.lower() == 'true',
                page=_int_param(request, 'page', 1),
                per_page=_int_param(request, 'per_page', 20),
            )
            return APIResponse.success(data=result)

        data, error = parse_json_body(request)
        if error:
            return error

        result = _run(request, 'create', f"Create user {data.get('email', '')}", None, lambda: UserService.create(
            name=data.get('name'),
            email=data.get('email'),
            password=data.get('password'),
            role=data.get('role', AppUser.RoleChoices.DISPATCH_STAFF),
            associated_site=data.get('associated_site'),
            is_active=data.get('is_active', True),
        ))
        return APIResponse.created(data=result['user'], message=result['message'])

    except ServiceError as e:
        return APIResponse.from_service_error(e)


@csrf_exempt
@api_view(["GET", "PATCH", "DELETE"])
@user_required
def user_detail(request, user_id):
    try:
        AccessService.require_admin(request.user)

        if request.method == 'GET':
            return APIResponse.success(data=UserService.get(user_id)['user'])

        if request.method == 'DELETE':
            result = _run(request, 'delete', 'Deactivate user', user_id,
                          lambda: UserService.deactivate(user_id, actor=request.user))
            return APIResponse.success(data=result['user'], message=result['message'])

        data, error = parse_json_body(request)
        if error:
            return error

        result = _run(request, 'update', 'Update user', user_id, lambda: UserService.update(user_id, **data))
        return APIResponse.success(data=result['user'], message=result['message'])

    except ServiceError as e:
        return APIResponse.from_service_error(e)
