"""
User profile updates and per-user donation statistics.
"""

import logging

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Q

from core.exceptions import Conflict, Forbidden, NotFound, ValidationFailed
from core.models import Donation
from core.services import history

User = get_user_model()
logger = logging.getLogger(__name__)


def update_profile(user_id, partial_fields, profile_image=None):
    """
    Update a user's profile and record what changed.

    Args:
        user_id: ID of the user being updated (always the actor)
        partial_fields: Mapping of profile field to new value
        profile_image: Optional uploaded image; not part of the history

    Returns:
        User: The updated user

    Raises:
        NotFound: Unknown user
        Conflict: The contact email is used by another user
        ValidationFailed: Invalid or unknown fields
    """
    unknown = sorted(set(partial_fields) - set(User.PROFILE_FIELDS))
    if unknown:
        raise ValidationFailed(
            'Unknown profile fields.',
            errors={field: ['This field cannot be changed.'] for field in unknown}
        )

    if not partial_fields and profile_image is None:
        raise ValidationFailed('At least one field must be provided for update.')

    with transaction.atomic():
        try:
            user = User.objects.select_for_update().get(pk=user_id)
        except User.DoesNotExist:
            raise NotFound(f'User with ID {user_id} does not exist.')

        contact_email = partial_fields.get('contact_email')
        if contact_email and User.objects.filter(
            contact_email__iexact=contact_email
        ).exclude(pk=user.pk).exists():
            raise Conflict('This contact email is already in use.')

        changes = history.diff(user, partial_fields)
        if not changes and profile_image is None:
            return user

        for field, value in partial_fields.items():
            setattr(user, field, value)
        if profile_image is not None:
            user.profile_image = profile_image

        try:
            user.save()
        except DjangoValidationError as exc:
            errors = exc.message_dict if hasattr(exc, 'error_dict') else {'non_field_errors': exc.messages}
            raise ValidationFailed('Validation failed.', errors=errors)

        history.record(history.OWNER_PROFILE, user.pk, changes)

    logger.info(
        f"Profile updated successfully. User ID: {user.id}, "
        f"Fields: {', '.join(sorted(changes)) or 'profile_image'}"
    )
    return user


def list_profile_history(user_id, actor_id):
    """
    Profile history of a user, newest first. Owner only.

    Raises:
        Forbidden: The actor is not the owner
    """
    if user_id != actor_id:
        raise Forbidden('Profile history is only visible to its owner.')
    return history.list_entries(history.OWNER_PROFILE, user_id)


def get_user_stats(user_id):
    """
    Count a user's donations.

    Returns:
        dict: donations_created, donations_received, donations_in_progress
    """
    return {
        'donations_created': Donation.objects.filter(donor_id=user_id).count(),
        'donations_received': Donation.objects.filter(
            recipient_id=user_id, status=Donation.STATUS_COMPLETED
        ).count(),
        'donations_in_progress': Donation.objects.filter(
            Q(donor_id=user_id) | Q(receiver_id=user_id),
            status__in=Donation.RECEIVER_STATUSES,
        ).count(),
    }


def get_public_profile(user_id):
    """Fetch an active user for the public profile page or raise NotFound."""
    try:
        return User.objects.get(pk=user_id, is_active=True)
    except User.DoesNotExist:
        raise NotFound(f'User with ID {user_id} does not exist.')
