from django.http import JsonResponse


class APIResponse:

    @staticmethod
    def success(data=None, message='Success', status=200):
        body = {'success': True, 'message': message}
        if data is not None:
            body['data'] = data
        return JsonResponse(body, status=status)

    @staticmethod
    def created(data=None, message='Created successfully'):
        return APIResponse.success(data=data, message=message, status=201)

    @staticmethod
    def error(message='Request failed', code='validation_failed', status=400, details=None):
        return JsonResponse({
            'success': False,
            'error': {
                'code': code,
                'message': message,
                'details': details or {},
            }
        }, status=status)

    @staticmethod
    def validation_error(errors=None, message='Validation failed'):
        return APIResponse.error(
            message=message,
            code='validation_failed',
            status=400,
            details={'errors': errors or {}},
        )

    @staticmethod
    def not_found(message='Not found'):
        return APIResponse.error(message=message, code='not_found', status=404)

    @staticmethod
    def unauthorized(message='Authentication required'):
        return APIResponse.error(message=message, code='unauthorized', status=401)

    @staticmethod
    def forbidden(message='You do not have access to this resource'):
        return APIResponse.error(message=message, code='forbidden', status=403)

    @staticmethod
    def from_service_error(e):
        return APIResponse.error(
            message=e.message,
            code=e.code,
            status=e.status_code,
            details=e.details,
        )
