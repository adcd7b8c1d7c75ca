from django.contrib import admin
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _
from django.urls import reverse
from django import forms
from django.contrib.auth.hashers import make_password
from unfold.admin import ModelAdmin
from unfold.decorators import display
from unfold.contrib.filters.admin import RangeDateTimeFilter
from .models import AppUser, Session, AuditLog


class AppUserAdminForm(forms.ModelForm):
    """AppUser form that hashes the password field"""
    password = forms.CharField(
        label=_("Password"),
        widget=forms.PasswordInput(attrs={'placeholder': 'Enter password'}),
        help_text=_("Enter a strong password. It will be securely hashed."),
        required=False,
    )

    class Meta:
        model = AppUser
        fields = '__all__'

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if self.instance and self.instance.pk:
            self.fields['password'].help_text = _(
                "Leave blank to keep the current password. Enter a new password to change it."
            )
            self.fields['password'].widget.attrs['placeholder'] = 'Leave blank to keep current password'
        else:
            self.fields['password'].required = True

    def clean_password(self):
        password = self.cleaned_data.get('password')
        if self.instance.pk and not password:
            return None
        if password and len(password) < 6:
            raise forms.ValidationError(_("Password must be at least 6 characters long."))
        return password

    def save(self, commit=True):
        user = super().save(commit=False)
        password = self.cleaned_data.get('password')
        if password:
            user.password = make_password(password)
        elif user.pk:
            user.password = AppUser.objects.filter(pk=user.pk).values_list('password', flat=True).first()
        if commit:
            user.save()
        return user


@admin.register(AppUser)
class AppUserAdmin(ModelAdmin):
    form = AppUserAdminForm
    list_display = ['name', 'email', 'role_badge', 'associated_site', 'status_badge', 'last_login_at']
    list_filter = [
        'role',
        'is_active',
        'associated_site',
        ('last_login_at', RangeDateTimeFilter),
    ]
    search_fields = ['name', 'email']
    list_filter_submit = True
    list_fullwidth = True
    readonly_fields = ['last_login_at', 'created_at', 'updated_at']

    fieldsets = (
        (_('Personal Information'), {
            'fields': ('name', 'email'),
            'classes': ['tab'],
        }),
        (_('Access & Security'), {
            'fields': ('role', 'associated_site', 'is_active', 'password'),
            'classes': ['tab'],
            'description': _('Admins, auditors and procurers see every site; other roles only their own.')
        }),
        (_('Activity Tracking'), {
            'fields': ('last_login_at', 'created_at', 'updated_at'),
            'classes': ['tab'],
        }),
    )

    @display(description=_("Role"), label=True)
    def role_badge(self, obj):
        colors = {
            AppUser.RoleChoices.ADMIN: 'danger',
            AppUser.RoleChoices.SITE_MANAGER: 'warning',
            AppUser.RoleChoices.AUDITOR: 'info',
            AppUser.RoleChoices.PROCURER: 'info',
        }
        return colors.get(obj.role, 'success'), obj.get_role_display()

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        if obj.is_active:
            return 'success', _('Active')
        return 'danger', _('Inactive')


@admin.register(Session)
class SessionAdmin(ModelAdmin):
    list_display = ['user_link', 'ip_address', 'user_agent', 'created_at', 'last_activity']
    list_filter = [
        ('last_activity', RangeDateTimeFilter),
    ]
    search_fields = ['ip_address', 'user_agent', 'user__email']
    list_filter_submit = True
    readonly_fields = ['token_id', 'created_at', 'last_activity']

    @display(description=_("User"))
    def user_link(self, obj):
        url = reverse('admin:main_appuser_change', args=[obj.user_id])
        return format_html('<a href="{}">{}</a>', url, obj.user.email)


@admin.register(AuditLog)
class AuditLogAdmin(ModelAdmin):
    list_display = ['timestamp', 'action', 'document_type', 'document_id', 'actor_id', 'success_badge']
    list_filter = [
        'action',
        'document_type',
        'success',
        ('timestamp', RangeDateTimeFilter),
    ]
    search_fields = ['description', 'document_id', 'actor_id']
    list_filter_submit = True
    list_fullwidth = True
    readonly_fields = [
        'timestamp', 'action', 'description', 'document_type',
        'document_id', 'actor_id', 'success', 'details',
    ]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    @display(description=_("Result"), label=True)
    def success_badge(self, obj):
        if obj.success:
            return 'success', _('OK')
        return 'danger', _('Failed')
