from rest_framework.authentication import BaseAuthentication

from main.services.auth_service import AuthService


class BearerTokenAuthentication(BaseAuthentication):
    """
    Resolves ``Authorization: Bearer <jwt>`` to an AppUser.

    Missing or stale tokens leave the request anonymous; views decide whether
    that is acceptable.
    """

    def authenticate(self, request):
        token = AuthService.token_from_header(request)
        if not token:
            return None

        user = AuthService.get_user_from_token(token)
        if user is None:
            return None
        return user, token

    def authenticate_header(self, request):
        return 'Bearer'
