import json

from rest_framework.exceptions import ParseError
from rest_framework.request import Request

from main.helpers.response import APIResponse


def parse_json_body(request):
    """Return ``(data, None)`` or ``(None, error_response)``."""
    if isinstance(request, Request):
        try:
            data = request.data
        except ParseError as e:
            return None, APIResponse.error(message=f'Invalid JSON: {e.detail}')
        if hasattr(data, 'dict'):
            data = data.dict()
    else:
        if not request.body:
            return {}, None
        try:
            data = json.loads(request.body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return None, APIResponse.error(message=f'Invalid JSON: {e}')

    if not isinstance(data, dict):
        return None, APIResponse.error(message='Request body must be a JSON object')
    return data, None


def get_client_ip(request):
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', '')


def get_user_agent(request):
    return request.META.get('HTTP_USER_AGENT', '')[:255]
