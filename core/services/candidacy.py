"""
Candidacy manager.

Users other than the donor register interest in an OPEN donation; the donor
later picks one of them as receiver. Candidacies are listed first-come
first-served and are purged as soon as a receiver is chosen.
"""

import logging

from django.db import IntegrityError, transaction

from core.exceptions import Conflict, NotFound, ValidationFailed
from core.models import Candidacy, Donation
from core.services.lookup import load_donation, require_user

logger = logging.getLogger(__name__)


def apply(donation_id, user_id):
    """
    Register a user's interest in a donation.

    Raises:
        NotFound: Unknown donation or user
        ValidationFailed: The user is the donor, or the donation is not OPEN
        Conflict: The user already applied for this donation
    """
    require_user(user_id)

    with transaction.atomic():
        donation = load_donation(donation_id, for_update=True)

        if donation.donor_id == user_id:
            raise ValidationFailed('You cannot apply for your own donation.')

        if donation.status != Donation.STATUS_OPEN:
            raise ValidationFailed('This donation is not accepting candidacies.')

        if Candidacy.objects.filter(donation_id=donation.pk, applicant_id=user_id).exists():
            raise Conflict('You have already applied for this donation.')

        try:
            with transaction.atomic():
                candidacy = Candidacy.objects.create(donation=donation, applicant_id=user_id)
        except IntegrityError:
            raise Conflict('You have already applied for this donation.')

    logger.info(
        f"Candidacy created. Donation ID: {donation.pk}, Applicant: {user_id}"
    )
    return candidacy


def withdraw(donation_id, user_id):
    """
    Withdraw a user's candidacy.

    Raises:
        NotFound: Unknown donation, or the user has no candidacy
        ValidationFailed: The donation is no longer OPEN
    """
    with transaction.atomic():
        donation = load_donation(donation_id, for_update=True)

        if donation.status != Donation.STATUS_OPEN:
            if donation.receiver_id == user_id:
                raise ValidationFailed(
                    'You are the receiver of this donation. Use cancel-receiving instead.'
                )
            raise ValidationFailed('Candidacies can only be withdrawn from open donations.')

        deleted, _ = Candidacy.objects.filter(
            donation_id=donation.pk, applicant_id=user_id
        ).delete()

        if not deleted:
            raise NotFound('You have not applied for this donation.')

    logger.info(
        f"Candidacy withdrawn. Donation ID: {donation.pk}, Applicant: {user_id}"
    )


def list_for_donation(donation_id):
    """Return the donation's candidacies, oldest first."""
    return (
        Candidacy.objects
        .filter(donation_id=donation_id)
        .select_related('applicant')
        .order_by('created_at', 'id')
    )


def list_for_user(user_id):
    """Return a user's candidacies, newest first."""
    return (
        Candidacy.objects
        .filter(applicant_id=user_id)
        .select_related('donation', 'donation__donor')
        .order_by('-created_at', '-id')
    )


def has_candidacy(donation_id, user_id):
    return Candidacy.objects.filter(donation_id=donation_id, applicant_id=user_id).exists()


def purge_all(donation_id):
    """
    Delete every candidacy of a donation.

    Runs inside the caller's transaction when the receiver is chosen.

    Returns:
        int: Number of candidacies removed
    """
    _, per_model = Candidacy.objects.filter(donation_id=donation_id).delete()
    return per_model.get(Candidacy._meta.label, 0)
