"""
CaterFlow identity and audit models
"""

import uuid
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class AppUser(models.Model):
    class RoleChoices(models.TextChoices):
        ADMIN = 'admin', 'Admin'
        SITE_MANAGER = 'siteManager', 'Site Manager'
        STOCK_CONTROLLER = 'stockController', 'Stock Controller'
        DISPATCH_STAFF = 'dispatchStaff', 'Dispatch Staff'
        AUDITOR = 'auditor', 'Auditor'
        PROCURER = 'procurer', 'Procurer'

    # Roles that are not tied to a single site
    MULTI_SITE_ROLES = (RoleChoices.ADMIN, RoleChoices.AUDITOR, RoleChoices.PROCURER)
    APPROVER_ROLES = (RoleChoices.ADMIN, RoleChoices.AUDITOR, RoleChoices.SITE_MANAGER)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    email = models.EmailField(unique=True)
    password = models.CharField(max_length=128)
    role = models.CharField(
        max_length=20,
        choices=RoleChoices.choices,
        default=RoleChoices.DISPATCH_STAFF,
    )
    associated_site = models.ForeignKey(
        'stock.Site',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='users',
    )
    is_active = models.BooleanField(default=True)
    last_login_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_admin(self):
        return self.role == self.RoleChoices.ADMIN

    @property
    def is_multi_site(self):
        return self.role in self.MULTI_SITE_ROLES

    @property
    def can_approve(self):
        return self.role in self.APPROVER_ROLES

    def __str__(self):
        return f"{self.name} <{self.email}>"


class Session(models.Model):
    user = models.ForeignKey(AppUser, on_delete=models.CASCADE, related_name='sessions')
    token_id = models.CharField(max_length=64, unique=True)
    ip_address = models.CharField(max_length=45, blank=True, default='')
    user_agent = models.CharField(max_length=255, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    last_activity = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Session {self.token_id[:8]} for {self.user.email}"


class AuditLog(models.Model):
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)
    action = models.CharField(max_length=50)
    description = models.TextField(blank=True, default='')
    document_type = models.CharField(max_length=50, blank=True, default='')
    document_id = models.CharField(max_length=64, blank=True, default='')
    actor_id = models.CharField(max_length=64, blank=True, default='')
    success = models.BooleanField(default=True)
    details = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['document_type', 'document_id']),
        ]

    def __str__(self):
        status = 'ok' if self.success else 'failed'
        return f"{self.action} {self.document_type} {self.document_id} ({status})"
