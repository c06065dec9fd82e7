"""
Donation lifecycle engine.

Owns the donation status machine:

    OPEN --choose-receiver--> IN_PROGRESS --both confirm pickup--> PICKED_UP
    IN_PROGRESS --cancel-receiving--> OPEN
    PICKED_UP --both confirm completion--> COMPLETED (terminal)
    PICKED_UP --signal-return, both confirm return--> OPEN

Every operation runs in one database transaction with the donation row
locked. Status changes are additionally written as conditional updates on
the expected current status, so a transition only happens if nobody changed
the status in the meantime. Any exception rolls the whole transaction back.
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from core.exceptions import Conflict, Forbidden, NotFound, ValidationFailed
from core.models import Donation, DonationCounter
from core.services import candidacy, history, progress
from core.services.lookup import load_donation, require_user
from core.services.progress import Checkpoint, Party, ProgressFlag, derive_status

logger = logging.getLogger(__name__)

RETURN_REASON_MIN_LENGTH = 10
RETURN_REASON_MAX_LENGTH = 500


def _save_validated(donation):
    try:
        donation.save()
    except DjangoValidationError as exc:
        errors = exc.message_dict if hasattr(exc, 'error_dict') else {'non_field_errors': exc.messages}
        raise ValidationFailed('Validation failed.', errors=errors)


def _normalize(fields):
    normalized = {}
    for field, value in fields.items():
        if isinstance(value, str):
            value = value.strip()
        if field == 'state' and value:
            value = value.upper()
        normalized[field] = value
    return normalized


def _snapshot(donation):
    return {
        'status': donation.status,
        'receiver': donation.receiver_id,
        'recipient': donation.recipient_id,
        'return_reason': donation.return_reason,
    }


def _transition(donation, actor_id, expected_status, **updates):
    """
    Move a donation away from ``expected_status``.

    The update only applies if the stored status still equals
    ``expected_status``; the resulting diff goes to the edit history.
    """
    before = _snapshot(donation)
    updated = Donation.objects.filter(
        pk=donation.pk, status=expected_status
    ).update(updated_at=timezone.now(), **updates)

    if updated != 1:
        raise Conflict('The donation was modified concurrently. Please retry.')

    donation.refresh_from_db()
    history.record(
        history.OWNER_DONATION,
        donation.pk,
        history.diff(before, _snapshot(donation)),
        edited_by_id=actor_id,
    )
    logger.info(
        f"Donation status updated. Donation ID: {donation.pk}, "
        f"Old Status: {expected_status}, New Status: {donation.status}, "
        f"User: {actor_id}"
    )
    return donation


def _reopen(donation, actor_id):
    """Detach the receiver and drop the progress record."""
    expected_status = donation.status
    progress.delete(donation.pk)
    return _transition(
        donation,
        actor_id,
        expected_status,
        status=Donation.STATUS_OPEN,
        receiver=None,
        return_reason=None,
    )


def _complete(donation, actor_id):
    """Close the exchange: the receiver becomes the recipient."""
    receiver_id = donation.receiver_id
    progress.delete(donation.pk)
    return _transition(
        donation,
        actor_id,
        Donation.STATUS_PICKED_UP,
        status=Donation.STATUS_COMPLETED,
        receiver=None,
        recipient_id=receiver_id,
    )


def _advance_status(donation, progress_record, actor_id):
    next_status = derive_status(donation.status, progress_record)
    if next_status == donation.status:
        return donation

    if next_status == Donation.STATUS_OPEN:
        return _reopen(donation, actor_id)

    if next_status == Donation.STATUS_COMPLETED:
        if donation.status == Donation.STATUS_IN_PROGRESS:
            donation = _transition(
                donation, actor_id, Donation.STATUS_IN_PROGRESS,
                status=Donation.STATUS_PICKED_UP,
            )
        return _complete(donation, actor_id)

    return _transition(donation, actor_id, donation.status, status=next_status)


def _require_role(donation, actor_id, message):
    role = donation.role_of(actor_id)
    if role is None:
        raise Forbidden(message)
    return Party(role)


# ============================================================================
# Donation CRUD
# ============================================================================

def create_donation(donor_id, fields):
    """
    Create an OPEN donation owned by ``donor_id``.

    The sequential number is allocated in the same transaction as the
    donation row, so a failed creation never consumes a number.

    Args:
        donor_id: ID of the donating user
        fields: Mapping with the editable donation fields

    Returns:
        Donation: The created donation

    Raises:
        NotFound: The donor does not exist
        ValidationFailed: Unknown or invalid fields
    """
    require_user(donor_id)

    unknown = sorted(set(fields) - set(Donation.EDITABLE_FIELDS))
    if unknown:
        raise ValidationFailed(
            'Unknown donation fields.',
            errors={field: ['This field cannot be set.'] for field in unknown}
        )

    with transaction.atomic():
        donation = Donation(
            donor_id=donor_id,
            sequential_id=DonationCounter.next_value(),
            status=Donation.STATUS_OPEN,
            **_normalize(fields)
        )
        _save_validated(donation)

    logger.info(
        f"Donation created. Donation ID: {donation.pk}, "
        f"Sequential ID: {donation.sequential_id}, Donor: {donor_id}"
    )
    return donation


def update_donation(donation_id, actor_id, partial_fields):
    """
    Edit an OPEN donation and record the diff.

    A request that changes nothing writes nothing and records no history.

    Raises:
        NotFound: Unknown donation
        Forbidden: The actor is not the donor
        ValidationFailed: Empty or invalid update, or donation not OPEN
    """
    if not partial_fields:
        raise ValidationFailed('At least one field must be provided for update.')

    unknown = sorted(set(partial_fields) - set(Donation.EDITABLE_FIELDS))
    if unknown:
        raise ValidationFailed(
            'Unknown donation fields.',
            errors={field: ['This field cannot be changed.'] for field in unknown}
        )

    fields = _normalize(partial_fields)

    with transaction.atomic():
        donation = load_donation(donation_id, for_update=True)

        if donation.donor_id != actor_id:
            raise Forbidden('Only the donor can edit this donation.')

        if donation.status != Donation.STATUS_OPEN:
            raise ValidationFailed('Only open donations can be edited.')

        changes = history.diff(donation, fields)
        if not changes:
            return donation

        for field, value in fields.items():
            setattr(donation, field, value)
        _save_validated(donation)

        history.record(history.OWNER_DONATION, donation.pk, changes, edited_by_id=actor_id)

    logger.info(
        f"Donation updated. Donation ID: {donation.pk}, "
        f"Fields: {', '.join(sorted(changes))}, User: {actor_id}"
    )
    return donation


def delete_donation(donation_id, actor_id):
    """
    Delete an OPEN donation with everything attached to it.

    Records are removed in order: progress, candidacies, edit history and
    finally the donation itself.

    Returns:
        dict: Number of candidacies and history entries removed

    Raises:
        NotFound: Unknown donation
        Forbidden: The actor is not the donor
        ValidationFailed: The donation is not OPEN
    """
    with transaction.atomic():
        donation = load_donation(donation_id, for_update=True)

        if donation.donor_id != actor_id:
            raise Forbidden('Only the donor can delete this donation.')

        if donation.status != Donation.STATUS_OPEN:
            raise ValidationFailed('Only open donations can be deleted.')

        progress.delete(donation.pk)
        purged = candidacy.purge_all(donation.pk)
        history_removed = history.delete_all(history.OWNER_DONATION, donation.pk)
        Donation.objects.filter(pk=donation.pk).delete()

    logger.info(
        f"Donation deleted. Donation ID: {donation_id}, "
        f"Candidacies removed: {purged}, User: {actor_id}"
    )
    return {'candidacies': purged, 'history_entries': history_removed}


def get_donation(donation_id):
    """
    Fetch a donation with its parties and candidacy count.

    The returned instance carries a ``candidacy_count`` attribute.
    """
    queryset = (
        Donation.objects
        .select_related('donor', 'receiver', 'recipient')
        .annotate(candidacy_count=Count('candidacies'))
    )
    try:
        return queryset.get(pk=donation_id)
    except (Donation.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound(f'Donation with ID {donation_id} does not exist.')


def is_party(donation_id, actor_id):
    """True if the actor is the donor, receiver or recipient of the donation."""
    return load_donation(donation_id).is_party(actor_id)


def filter_donations(status=None, category=None, city=None, state=None):
    """
    Build the public donation listing, newest first.

    Raises:
        ValidationFailed: Unknown status or category
    """
    errors = {}
    if status and status not in dict(Donation.STATUS_CHOICES):
        errors['status'] = [f'"{status}" is not a valid status.']
    if category and category not in dict(Donation.CATEGORY_CHOICES):
        errors['category'] = [f'"{category}" is not a valid category.']
    if errors:
        raise ValidationFailed('Invalid filters.', errors=errors)

    queryset = Donation.objects.select_related('donor')
    if status:
        queryset = queryset.filter(status=status)
    if category:
        queryset = queryset.filter(category=category)
    if city:
        queryset = queryset.filter(city__icontains=city.strip())
    if state:
        queryset = queryset.filter(state=state.strip().upper())
    return queryset.order_by('-created_at', '-sequential_id')


def list_donations_by_donor(donor_id):
    """Donations created by a user, newest first."""
    return (
        Donation.objects
        .filter(donor_id=donor_id)
        .select_related('donor', 'receiver', 'recipient')
        .order_by('-created_at', '-sequential_id')
    )


def list_received_donations(user_id):
    """Donations a user is receiving or has received, newest first."""
    return (
        Donation.objects
        .filter(Q(receiver_id=user_id) | Q(recipient_id=user_id))
        .select_related('donor', 'receiver', 'recipient')
        .order_by('-created_at', '-sequential_id')
    )


def get_history(donation_id):
    """Public edit history of a donation, newest first."""
    donation = load_donation(donation_id)
    return history.list_entries(history.OWNER_DONATION, donation.pk)


# ============================================================================
# Candidacies and receiver selection
# ============================================================================

def apply_for_donation(donation_id, actor_id):
    return candidacy.apply(donation_id, actor_id)


def withdraw_candidacy(donation_id, actor_id):
    return candidacy.withdraw(donation_id, actor_id)


def list_candidates(donation_id, actor_id):
    """
    Candidacies of a donation, oldest first. Donor only.

    Raises:
        NotFound: Unknown donation
        Forbidden: The actor is not the donor
    """
    donation = load_donation(donation_id)
    if donation.donor_id != actor_id:
        raise Forbidden('Only the donor can see the candidates of this donation.')
    return candidacy.list_for_donation(donation.pk)


def choose_receiver(donation_id, actor_id, receiver_id):
    """
    Select one of the candidates as receiver.

    The donation moves to IN_PROGRESS, the progress record is created and
    all candidacies (including the chosen one) are purged, in one
    transaction. The status is switched with a conditional update on
    ``status = OPEN``; if two selections race, exactly one succeeds.

    Raises:
        NotFound: Unknown donation
        Forbidden: The actor is not the donor
        ValidationFailed: Donation not OPEN, or the user has no candidacy
    """
    with transaction.atomic():
        donation = load_donation(donation_id, for_update=True)

        if donation.donor_id != actor_id:
            raise Forbidden('Only the donor can choose the receiver.')

        if donation.status in Donation.RECEIVER_STATUSES:
            raise ValidationFailed('This donation already has a receiver.')

        if donation.status != Donation.STATUS_OPEN:
            raise ValidationFailed('Only open donations can have a receiver chosen.')

        if receiver_id == donation.donor_id:
            raise ValidationFailed('The donor cannot receive their own donation.')

        if not candidacy.has_candidacy(donation.pk, receiver_id):
            raise ValidationFailed(
                'The selected user has not applied for this donation.',
                errors={'receiver_id': ['No active candidacy for this user.']}
            )

        before = _snapshot(donation)
        updated = Donation.objects.filter(
            pk=donation.pk, status=Donation.STATUS_OPEN, receiver__isnull=True
        ).update(
            status=Donation.STATUS_IN_PROGRESS,
            receiver_id=receiver_id,
            updated_at=timezone.now(),
        )
        if updated != 1:
            raise ValidationFailed('This donation already has a receiver.')

        progress.initialize(donation.pk)
        purged = candidacy.purge_all(donation.pk)

        donation.refresh_from_db()
        history.record(
            history.OWNER_DONATION,
            donation.pk,
            history.diff(before, _snapshot(donation)),
            edited_by_id=actor_id,
        )

    logger.info(
        f"Receiver chosen. Donation ID: {donation.pk}, Receiver: {receiver_id}, "
        f"Candidacies purged: {purged}, User: {actor_id}"
    )
    return donation


def cancel_receiving(donation_id, actor_id):
    """
    Receiver gives up the donation before pickup; it becomes OPEN again.

    Raises:
        NotFound: Unknown donation
        Forbidden: The actor is not the receiver
        ValidationFailed: The donation is not IN_PROGRESS
    """
    with transaction.atomic():
        donation = load_donation(donation_id, for_update=True)

        if donation.receiver_id is None or donation.receiver_id != actor_id:
            raise Forbidden('Only the receiver can cancel receiving this donation.')

        if donation.status != Donation.STATUS_IN_PROGRESS:
            raise ValidationFailed(
                'Receiving can only be cancelled before the pickup is confirmed. '
                'Signal a return instead.'
            )

        return _reopen(donation, actor_id)


# ============================================================================
# Progress and return cycle
# ============================================================================

def get_progress(donation_id, actor_id):
    """
    Progress summary of a donation. Parties only.

    Raises:
        NotFound: Unknown donation
        Forbidden: The actor is not a party
    """
    donation = load_donation(donation_id)
    if not donation.is_party(actor_id):
        raise Forbidden('Only the donor and the receiver can see the progress.')
    return progress.summarize(donation.pk)


def update_progress(donation_id, actor_id, flag_set):
    """
    Record a party's confirmations and advance the status if both agree.

    Args:
        donation_id: Donation primary key
        actor_id: Acting user
        flag_set: Mapping of progress flag field name to bool

    Returns:
        Donation: The donation after any automatic transition

    Raises:
        NotFound: Unknown donation
        Forbidden: The actor is not a party, or sets the other party's flags
        ValidationFailed: A progress guard is violated
    """
    if not flag_set:
        raise ValidationFailed('At least one progress flag must be provided.')

    with transaction.atomic():
        donation = load_donation(donation_id, for_update=True)

        role = _require_role(
            donation, actor_id, 'Only the donor and the receiver can update the progress.'
        )

        if donation.status not in Donation.RECEIVER_STATUSES:
            raise ValidationFailed(
                'Progress can only be updated while the donation is in progress or picked up.'
            )

        flags = progress.parse_flags(flag_set)
        if role is Party.RECEIVER and flags.get(ProgressFlag.RETURN_SIGNALED_BY_RECEIVER):
            raise ValidationFailed('Use signal-return to start a return with a reason.')

        result = progress.apply_flag_update(donation.pk, role, flags)
        return _advance_status(donation, result.progress, actor_id)


def signal_return(donation_id, actor_id, reason):
    """
    Receiver announces that the picked up item will be returned.

    Raises:
        NotFound: Unknown donation
        Forbidden: The actor is not the receiver
        ValidationFailed: Bad reason, donation not PICKED_UP, or already signaled
    """
    reason = (reason or '').strip()
    if not RETURN_REASON_MIN_LENGTH <= len(reason) <= RETURN_REASON_MAX_LENGTH:
        raise ValidationFailed(
            'Invalid return reason.',
            errors={'reason': [
                f'Reason must have between {RETURN_REASON_MIN_LENGTH} and '
                f'{RETURN_REASON_MAX_LENGTH} characters.'
            ]}
        )

    with transaction.atomic():
        donation = load_donation(donation_id, for_update=True)

        if donation.receiver_id is None or donation.receiver_id != actor_id:
            raise Forbidden('Only the receiver can signal a return.')

        if donation.status != Donation.STATUS_PICKED_UP:
            raise ValidationFailed('A return can only be signaled after the pickup is confirmed.')

        if progress.get(donation.pk).return_signaled_by_receiver:
            raise ValidationFailed('A return has already been signaled for this donation.')

        progress.apply_flag_update(
            donation.pk, Party.RECEIVER, {ProgressFlag.RETURN_SIGNALED_BY_RECEIVER: True}
        )

        before = _snapshot(donation)
        Donation.objects.filter(pk=donation.pk).update(
            return_reason=reason, updated_at=timezone.now()
        )
        donation.refresh_from_db()
        history.record(
            history.OWNER_DONATION,
            donation.pk,
            history.diff(before, _snapshot(donation)),
            edited_by_id=actor_id,
        )

    logger.info(f"Return signaled. Donation ID: {donation.pk}, User: {actor_id}")
    return donation


def confirm_return(donation_id, actor_id):
    """
    A party confirms a signaled return. Once both did, the donation is OPEN
    again with no receiver, no progress record and no return reason.

    Confirming twice is a no-op.

    Raises:
        NotFound: Unknown donation
        Forbidden: The actor is not a party
        ValidationFailed: No return has been signaled
    """
    with transaction.atomic():
        donation = load_donation(donation_id, for_update=True)

        role = _require_role(
            donation, actor_id, 'Only the donor and the receiver can confirm a return.'
        )

        if donation.status != Donation.STATUS_PICKED_UP:
            raise ValidationFailed('There is no return to confirm for this donation.')

        record = progress.get(donation.pk)
        if not record.return_signaled_by_receiver:
            raise ValidationFailed('The receiver has not signaled a return.')

        flag = ProgressFlag.for_checkpoint(Checkpoint.RETURN_CONFIRM, role)
        if getattr(record, flag.field_name):
            logger.info(
                f"Return already confirmed. Donation ID: {donation.pk}, "
                f"Party: {role.value}, User: {actor_id}"
            )
            return donation

        result = progress.apply_flag_update(donation.pk, role, {flag: True})
        return _advance_status(donation, result.progress, actor_id)
