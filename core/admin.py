"""
Django admin configuration for users, donations and their audit records.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _

from .models import (
    Candidacy,
    Donation,
    DonationCounter,
    DonationEditHistory,
    DonationProgress,
    ProfileEditHistory,
    User,
)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Custom admin interface for User model.

    Extends Django's UserAdmin with the profile and contact fields.
    """

    list_display = [
        'email',
        'username',
        'name',
        'city',
        'state',
        'is_staff',
        'is_active',
        'created_at',
    ]

    list_filter = [
        'state',
        'is_staff',
        'is_superuser',
        'is_active',
        'created_at',
    ]

    search_fields = [
        'email',
        'username',
        'name',
        'city',
        'contact_email',
    ]

    ordering = ['-created_at']

    fieldsets = (
        (None, {
            'fields': ('username', 'password')
        }),
        (_('Personal Info'), {
            'fields': ('name', 'email', 'phone_number', 'biography', 'profile_image')
        }),
        (_('Address'), {
            'fields': (
                'postal_code',
                'street',
                'house_number',
                'neighborhood',
                'city',
                'state',
            )
        }),
        (_('Contact'), {
            'fields': ('contact_email', 'contact_phone', 'social_networks')
        }),
        (_('Permissions'), {
            'fields': (
                'is_active',
                'is_staff',
                'is_superuser',
                'groups',
                'user_permissions',
            ),
            'classes': ('collapse',),
        }),
        (_('Important Dates'), {
            'fields': ('last_login', 'date_joined', 'created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': (
                'username',
                'email',
                'name',
                'password1',
                'password2',
            ),
        }),
    )

    readonly_fields = ['created_at', 'updated_at', 'last_login', 'date_joined']

    date_hierarchy = 'created_at'

    list_per_page = 25

    def get_readonly_fields(self, request, obj=None):
        if obj:  # Editing an existing object
            return self.readonly_fields
        return []


# ============================================================================
# Donations
# ============================================================================

class CandidacyInline(admin.TabularInline):
    """Inline admin for the candidacies of a donation."""
    model = Candidacy
    extra = 0
    fields = ['applicant', 'created_at']
    readonly_fields = ['created_at']
    ordering = ['created_at']


class DonationProgressInline(admin.StackedInline):
    """Read-only view of the progress flags; flags change through the API only."""
    model = DonationProgress
    extra = 0
    can_delete = False
    readonly_fields = DonationProgress.FLAG_FIELDS + ['created_at', 'updated_at']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Donation)
class DonationAdmin(admin.ModelAdmin):
    """
    Admin interface for Donation model.

    Status, receiver and recipient are read-only: lifecycle transitions must
    go through the service layer so progress and history stay consistent.
    """

    list_display = [
        'sequential_id',
        'title',
        'donor',
        'category',
        'city',
        'state',
        'status',
        'receiver',
        'created_at',
    ]

    list_filter = [
        'status',
        'category',
        'pickup_type',
        'state',
        'created_at',
    ]

    search_fields = [
        'title',
        'description',
        'city',
        'donor__email',
        'donor__name',
    ]

    readonly_fields = [
        'id',
        'sequential_id',
        'status',
        'receiver',
        'recipient',
        'return_reason',
        'created_at',
        'updated_at',
    ]

    ordering = ['-created_at']

    date_hierarchy = 'created_at'

    list_per_page = 25

    inlines = [DonationProgressInline, CandidacyInline]

    fieldsets = (
        (None, {
            'fields': ('id', 'sequential_id', 'donor', 'title', 'description')
        }),
        (_('Details'), {
            'fields': ('category', 'pickup_type')
        }),
        (_('Location'), {
            'fields': (
                'postal_code',
                'street',
                'location_number',
                'neighborhood',
                'city',
                'state',
            )
        }),
        (_('Lifecycle'), {
            'fields': ('status', 'receiver', 'recipient', 'return_reason')
        }),
        (_('Timestamps'), {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )


@admin.register(DonationCounter)
class DonationCounterAdmin(admin.ModelAdmin):
    list_display = ['name', 'value']
    readonly_fields = ['name', 'value']


# ============================================================================
# Edit History
# ============================================================================

class EditHistoryAdmin(admin.ModelAdmin):
    """History entries are append-only."""

    readonly_fields = ['changes', 'edited_at']

    ordering = ['-edited_at']

    date_hierarchy = 'edited_at'

    list_per_page = 50

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(DonationEditHistory)
class DonationEditHistoryAdmin(EditHistoryAdmin):

    list_display = ['id', 'donation', 'edited_by', 'edited_at']

    search_fields = ['donation__title', 'edited_by__email']


@admin.register(ProfileEditHistory)
class ProfileEditHistoryAdmin(EditHistoryAdmin):

    list_display = ['id', 'user', 'edited_at']

    search_fields = ['user__email', 'user__name']
