import logging
import uuid
from datetime import datetime, timedelta, timezone as dt_timezone

import jwt
from django.conf import settings
from django.contrib.auth.hashers import make_password, check_password
from django.db import transaction
from django.utils import timezone

from ..models import AppUser, Session

logger = logging.getLogger(__name__)


class AuthService:
    JWT_SECRET = getattr(settings, 'JWT_SECRET_KEY', settings.SECRET_KEY)
    JWT_ALGORITHM = getattr(settings, 'JWT_ALGORITHM', 'HS256')
    JWT_EXPIRY_DAYS = getattr(settings, 'JWT_EXPIRY_DAYS', 7)

    MIN_PASSWORD_LENGTH = 6

    @classmethod
    @transaction.atomic
    def login(cls, email, password, ip_address='', user_agent=''):
        email = (email or '').strip().lower()
        try:
            user = AppUser.objects.select_related('associated_site').get(email__iexact=email)
        except AppUser.DoesNotExist:
            return {'success': False, 'token': None, 'user': None, 'message': 'Invalid credentials'}

        if not user.is_active:
            return {'success': False, 'token': None, 'user': None, 'message': 'Account disabled'}

        if not check_password(password or '', user.password):
            return {'success': False, 'token': None, 'user': None, 'message': 'Invalid credentials'}

        token, token_id = cls._generate_token(user)

        Session.objects.create(
            user=user,
            token_id=token_id,
            ip_address=ip_address or '',
            user_agent=user_agent or '',
        )

        AppUser.objects.filter(id=user.id).update(last_login_at=timezone.now())

        logger.info("User %s logged in from %s", user.email, ip_address or 'unknown')
        return {'success': True, 'token': token, 'user': user, 'message': 'Login successful'}

    @classmethod
    def logout(cls, token):
        payload = cls._decode(token)
        if not payload:
            return {'success': False, 'message': 'Invalid token'}

        deleted, _ = Session.objects.filter(token_id=payload.get('jti')).delete()
        if not deleted:
            return {'success': False, 'message': 'Session already ended'}
        return {'success': True, 'message': 'Logged out successfully'}

    @classmethod
    @transaction.atomic
    def change_password(cls, user, current_password, new_password, keep_token=None):
        if not check_password(current_password or '', user.password):
            return {'success': False, 'message': 'Current password is incorrect'}

        if len(new_password or '') < cls.MIN_PASSWORD_LENGTH:
            return {
                'success': False,
                'message': f'Password must be at least {cls.MIN_PASSWORD_LENGTH} characters',
            }

        user.password = make_password(new_password)
        user.save(update_fields=['password', 'updated_at'])

        # End every other session for this user
        sessions = Session.objects.filter(user=user)
        payload = cls._decode(keep_token) if keep_token else None
        if payload:
            sessions = sessions.exclude(token_id=payload.get('jti'))
        sessions.delete()

        logger.info("Password changed for %s", user.email)
        return {'success': True, 'message': 'Password changed'}

    @classmethod
    def get_user_from_token(cls, token):
        return cls._verify_token(token)

    @classmethod
    def _generate_token(cls, user):
        token_id = uuid.uuid4().hex
        now = datetime.now(dt_timezone.utc)
        payload = {
            'user_id': str(user.id),
            'email': user.email,
            'role': user.role,
            'jti': token_id,
            'exp': now + timedelta(days=cls.JWT_EXPIRY_DAYS),
            'iat': now,
        }
        return jwt.encode(payload, cls.JWT_SECRET, algorithm=cls.JWT_ALGORITHM), token_id

    @classmethod
    def _decode(cls, token):
        if not token:
            return None
        try:
            return jwt.decode(token, cls.JWT_SECRET, algorithms=[cls.JWT_ALGORITHM])
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def _verify_token(cls, token):
        payload = cls._decode(token)
        if not payload:
            return None

        session = (
            Session.objects
            .select_related('user', 'user__associated_site')
            .filter(token_id=payload.get('jti'), user_id=payload.get('user_id'))
            .first()
        )
        if session is None or not session.user.is_active:
            return None

        return session.user

    @staticmethod
    def token_from_header(request):
        header = request.META.get('HTTP_AUTHORIZATION', '')
        if header.startswith('Bearer '):
            return header[7:].strip()
        return None
