"""
Entity lookups shared by the donation services.
"""

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError

from core.exceptions import NotFound
from core.models import Donation

User = get_user_model()


def load_donation(donation_id, for_update=False):
    """
    Fetch a donation or raise NotFound.

    Args:
        donation_id: Donation primary key (UUID or its string form)
        for_update: Lock the row until the surrounding transaction ends

    Returns:
        Donation: The donation instance
    """
    queryset = Donation.objects.all()
    if for_update:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(pk=donation_id)
    except (Donation.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound(f'Donation with ID {donation_id} does not exist.')


def require_user(user_id):
    """Raise NotFound unless a user with this ID exists."""
    if user_id is None or not User.objects.filter(pk=user_id).exists():
        raise NotFound(f'User with ID {user_id} does not exist.')
