from functools import wraps

from main.helpers.response import APIResponse


def user_required(view_func):
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        user = getattr(request, 'user', None)
        if user is None or not getattr(user, 'is_authenticated', False) or not hasattr(user, 'role'):
            return APIResponse.unauthorized()
        return view_func(request, *args, **kwargs)
    return wrapper


def role_required(*roles):
    def decorator(view_func):
        @wraps(view_func)
        @user_required
        def wrapper(request, *args, **kwargs):
            if request.user.role not in roles:
                return APIResponse.forbidden()
            return view_func(request, *args, **kwargs)
        return wrapper
    return decorator
