from django.views.decorators.csrf import csrf_exempt
from rest_framework.decorators import api_view

from main.helpers.request import get_client_ip, get_user_agent, parse_json_body
from main.helpers.require_login import user_required
from main.helpers.response import APIResponse
from main.services.audit_service import AuditService
from main.services.auth_service import AuthService
from main.services.user_service import UserService


@csrf_exempt
@api_view(["POST"])
def login(request):
    data, error = parse_json_body(request)
    if error:
        return error

    missing = [field for field in ('email', 'password') if not data.get(field)]
    if missing:
        return APIResponse.validation_error(
            errors={field: f'{field} is required' for field in missing},
            message=f'Missing required fields: {", ".join(missing)}'
        )

    result = AuthService.login(
        email=data['email'],
        password=data['password'],
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )

    user = result['user']
    AuditService.record(
        'login',
        f"Login {'succeeded' if result['success'] else 'failed'} for {data['email']}",
        document_type='AppUser',
        document_id=user.id if user else None,
        actor_id=user.id if user else None,
        success=result['success'],
    )

    if result['success']:
        return APIResponse.success(data={
            'token': result['token'],
            'user': UserService.serialize(user),
        }, message=result['message'])

    return APIResponse.unauthorized(message=result['message'])


@csrf_exempt
@api_view(["POST"])
@user_required
def logout(request):
    result = AuthService.logout(request.auth)
    AuditService.record('logout', 'User logged out', 'AppUser', request.user.id, request.user.id,
                        success=result['success'])

    if result['success']:
        return APIResponse.success(message=result['message'])
    return APIResponse.unauthorized(message=result['message'])


@csrf_exempt
@api_view(["GET"])
@user_required
def me(request):
    return APIResponse.success(data=UserService.serialize(request.user))


@csrf_exempt
@api_view(["POST"])
@user_required
def change_password(request):
    data, error = parse_json_body(request)
    if error:
        return error

    result = AuthService.change_password(
        request.user,
        current_password=data.get('current_password'),
        new_password=data.get('new_password'),
        keep_token=request.auth,
    )
    AuditService.record('change_password', 'Password change', 'AppUser', request.user.id,
                        request.user.id, success=result['success'])

    if result['success']:
        return APIResponse.success(message=result['message'])
    return APIResponse.error(message=result['message'])
