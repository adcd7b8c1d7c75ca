import logging

from django.contrib.auth.hashers import make_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.db import transaction
from django.db.models import Q

from main.models import AppUser, Session
from stock.models import Site
from stock.services.base_service import (
    BaseService,
    ConflictError,
    NotFoundError,
    ValidationError,
    id_str,
    paginate_queryset,
    success_response,
)
from stock.services.references import resolve_ref

logger = logging.getLogger(__name__)


class UserService(BaseService):
    model = AppUser

    VALID_ROLES = [choice.value for choice in AppUser.RoleChoices]
    MIN_PASSWORD_LENGTH = 6

    @classmethod
    def list(cls, search=None, role=None, site_id=None, is_active=None, page=1, per_page=20):
        queryset = AppUser.objects.select_related('associated_site')

        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(email__icontains=search))
        if role:
            queryset = queryset.filter(role=role)
        if site_id:
            queryset = queryset.filter(associated_site_id=site_id)
        if is_active is not None:
            queryset = queryset.filter(is_active=is_active)

        items, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            'items': [cls.serialize(user) for user in items],
            'pagination': pagination,
        })

    @classmethod
    def get(cls, user_id):
        return success_response({'user': cls.serialize(cls.get_or_404(user_id))})

    @classmethod
    @transaction.atomic
    def create(cls, name, email, password, role=AppUser.RoleChoices.DISPATCH_STAFF,
               associated_site=None, is_active=True):
        if not name:
            raise ValidationError("Name is required", "name")

        email = cls._clean_email(email)
        if AppUser.objects.filter(email__iexact=email).exists():
            raise ConflictError(f"Email already registered: {email}", {'field': 'email'})

        cls._check_password(password)
        cls._check_role(role)
        site = cls._resolve_site(associated_site)

        user = AppUser.objects.create(
            name=name,
            email=email,
            password=make_password(password),
            role=role,
            associated_site=site,
            is_active=is_active,
        )
        logger.info("User %s created with role %s", user.email, user.role)
        return success_response({'user': cls.serialize(user)}, "User created")

    @classmethod
    @transaction.atomic
    def update(cls, user_id, **data):
        user = cls.get_or_404(user_id)

        if 'name' in data:
            if not data['name']:
                raise ValidationError("Name is required", "name")
            user.name = data['name']

        if 'email' in data:
            email = cls._clean_email(data['email'])
            if AppUser.objects.filter(email__iexact=email).exclude(id=user.id).exists():
                raise ConflictError(f"Email already registered: {email}", {'field': 'email'})
            user.email = email

        if 'role' in data:
            cls._check_role(data['role'])
            user.role = data['role']

        if 'associated_site' in data:
            user.associated_site = cls._resolve_site(data['associated_site'])

        if data.get('password'):
            cls._check_password(data['password'])
            user.password = make_password(data['password'])
            Session.objects.filter(user=user).delete()

        if 'is_active' in data:
            user.is_active = bool(data['is_active'])
            if not user.is_active:
                Session.objects.filter(user=user).delete()

        user.save()
        return success_response({'user': cls.serialize(user)}, "User updated")

    @classmethod
    @transaction.atomic
    def deactivate(cls, user_id, actor=None):
        user = cls.get_or_404(user_id)
        if actor is not None and str(actor.id) == str(user.id):
            raise ValidationError("You cannot deactivate your own account")

        user.is_active = False
        user.save(update_fields=['is_active', 'updated_at'])
        Session.objects.filter(user=user).delete()
        logger.info("User %s deactivated", user.email)
        return success_response({'user': cls.serialize(user)}, "User deactivated")

    @staticmethod
    def _clean_email(email):
        email = (email or '').strip().lower()
        try:
            validate_email(email)
        except DjangoValidationError:
            raise ValidationError(f"Invalid email: {email or '(empty)'}", "email")
        return email

    @classmethod
    def _check_password(cls, password):
        if len(password or '') < cls.MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {cls.MIN_PASSWORD_LENGTH} characters", "password"
            )

    @classmethod
    def _check_role(cls, role):
        if role not in cls.VALID_ROLES:
            raise ValidationError(
                f"Invalid role: {role}", "role", {'valid_roles': cls.VALID_ROLES}
            )

    @staticmethod
    def _resolve_site(value):
        site_id = resolve_ref(value)
        if site_id is None:
            return None
        try:
            return Site.objects.get(id=site_id)
        except (Site.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError("Site", site_id)

    @staticmethod
    def serialize(user):
        return {
            'id': str(user.id),
            'name': user.name,
            'email': user.email,
            'role': user.role,
            'associated_site': id_str(user.associated_site_id),
            'is_active': user.is_active,
            'last_login_at': user.last_login_at.isoformat() if user.last_login_at else None,
            'created_at': user.created_at.isoformat() if user.created_at else None,
        }
