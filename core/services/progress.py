"""
Progress tracker.

Every donation with a receiver has one DonationProgress record: seven
boolean flags confirming the pickup, the completion and an optional return
of the item. Each flag belongs to exactly one party. The ``ProgressFlag``
enumeration pairs a checkpoint with its owning party, so ownership checks are
lookups over a closed set instead of field-name matching.

Rules enforced on every flag update:
- A party may only set flags of its own half (Forbidden otherwise)
- Completion flags and the return signal require a jointly confirmed pickup
- Return confirmations require a signaled return
- Completion cannot be confirmed while a return is pending
- Confirmations are never withdrawn (true -> false is rejected)

``derive_status`` is the single place where flags turn into a donation
status; the lifecycle service calls it after each flag write.
"""

import logging
from collections import namedtuple
from enum import Enum

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import Conflict, Forbidden, NotFound, ValidationFailed
from core.models import Donation, DonationProgress

logger = logging.getLogger(__name__)


class Party(Enum):
    DONOR = 'donor'
    RECEIVER = 'receiver'


class Checkpoint(Enum):
    PICKUP = 'pickup'
    COMPLETION = 'completion'
    RETURN_SIGNAL = 'return_signal'
    RETURN_CONFIRM = 'return_confirm'


class ProgressFlag(Enum):
    """A (checkpoint, party) pair backed by one DonationProgress field."""

    PICKUP_CONFIRMED_BY_DONOR = (Checkpoint.PICKUP, Party.DONOR)
    PICKUP_CONFIRMED_BY_RECEIVER = (Checkpoint.PICKUP, Party.RECEIVER)
    COMPLETION_CONFIRMED_BY_DONOR = (Checkpoint.COMPLETION, Party.DONOR)
    COMPLETION_CONFIRMED_BY_RECEIVER = (Checkpoint.COMPLETION, Party.RECEIVER)
    RETURN_SIGNALED_BY_RECEIVER = (Checkpoint.RETURN_SIGNAL, Party.RECEIVER)
    RETURN_CONFIRMED_BY_DONOR = (Checkpoint.RETURN_CONFIRM, Party.DONOR)
    RETURN_CONFIRMED_BY_RECEIVER = (Checkpoint.RETURN_CONFIRM, Party.RECEIVER)

    def __init__(self, checkpoint, party):
        self.checkpoint = checkpoint
        self.party = party

    @property
    def field_name(self):
        return self.name.lower()

    @classmethod
    def from_field(cls, field_name):
        try:
            return cls[field_name.upper()]
        except KeyError:
            raise ValidationFailed(
                f'Unknown progress flag: {field_name}.',
                errors={field_name: ['Unknown progress flag.']}
            )

    @classmethod
    def for_checkpoint(cls, checkpoint, party):
        for flag in cls:
            if flag.checkpoint is checkpoint and flag.party is party:
                return flag
        raise ValueError(f'{party.value} has no {checkpoint.value} flag')


FlagUpdateResult = namedtuple(
    'FlagUpdateResult',
    ['progress', 'pickup_confirmed', 'completion_confirmed', 'return_completed']
)


# ============================================================================
# Status derivation
# ============================================================================

def derive_status(current_status, progress):
    """
    Compute the donation status implied by the progress flags.

    Transitions:
    - IN_PROGRESS -> PICKED_UP once both parties confirmed the pickup
    - PICKED_UP -> OPEN once a signaled return is confirmed by both parties
    - PICKED_UP -> COMPLETED once both parties confirmed the completion

    Args:
        current_status: Status the donation is in now
        progress: DonationProgress (saved or not) or None

    Returns:
        str: The status the donation should be in
    """
    if progress is None:
        return current_status

    status = current_status

    if status == Donation.STATUS_IN_PROGRESS and progress.pickup_confirmed:
        status = Donation.STATUS_PICKED_UP

    if status == Donation.STATUS_PICKED_UP:
        if progress.return_completed:
            return Donation.STATUS_OPEN
        if progress.completion_confirmed:
            return Donation.STATUS_COMPLETED

    return status


# ============================================================================
# Record lifecycle
# ============================================================================

def initialize(donation_id):
    """
    Create the all-false progress record of a donation.

    Raises:
        Conflict: If the donation already has a progress record
    """
    try:
        with transaction.atomic():
            return DonationProgress.objects.create(donation_id=donation_id)
    except IntegrityError:
        raise Conflict('This donation already has a progress record.')


def get(donation_id, for_update=False):
    """Fetch the progress record of a donation or raise NotFound."""
    queryset = DonationProgress.objects.all()
    if for_update:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(donation_id=donation_id)
    except DonationProgress.DoesNotExist:
        raise NotFound('This donation has no progress record.')


def reset_return_process(donation_id):
    """Clear the return signal and both return confirmations."""
    return DonationProgress.objects.filter(donation_id=donation_id).update(
        return_signaled_by_receiver=False,
        return_confirmed_by_donor=False,
        return_confirmed_by_receiver=False,
        updated_at=timezone.now(),
    )


def reset(donation_id):
    """Set all seven flags back to false."""
    cleared = {field: False for field in DonationProgress.FLAG_FIELDS}
    return DonationProgress.objects.filter(donation_id=donation_id).update(
        updated_at=timezone.now(), **cleared
    )


def delete(donation_id):
    """
    Remove the progress record of a donation.

    Returns:
        int: Number of records removed (0 or 1)
    """
    deleted, _ = DonationProgress.objects.filter(donation_id=donation_id).delete()
    return deleted


# ============================================================================
# Flag updates
# ============================================================================

def parse_flags(requested_flags):
    """
    Normalize a flag request to ``{ProgressFlag: bool}``.

    Keys may be ProgressFlag members or field names.
    """
    parsed = {}
    for key, value in requested_flags.items():
        flag = key if isinstance(key, ProgressFlag) else ProgressFlag.from_field(key)
        parsed[flag] = bool(value)
    return parsed


def apply_flag_update(donation_id, actor_role, requested_flags):
    """
    Apply a party's confirmations to a donation's progress.

    Flags are written as field-level updates and the record is re-read
    afterwards, so a concurrent update by the other party is never lost and
    the derived booleans reflect the merged state.

    Args:
        donation_id: Donation primary key
        actor_role: Party of the acting user
        requested_flags: Mapping of ProgressFlag (or field name) to bool

    Returns:
        FlagUpdateResult: The refreshed record plus pickup_confirmed,
        completion_confirmed and return_completed

    Raises:
        Forbidden: A requested flag belongs to the other party
        ValidationFailed: A guard is violated
        NotFound: The donation has no progress record
    """
    flags = parse_flags(requested_flags)

    foreign = sorted(flag.field_name for flag in flags if flag.party is not actor_role)
    if foreign:
        raise Forbidden(
            f'The {actor_role.value} cannot update {", ".join(foreign)}.'
        )

    record = get(donation_id, for_update=True)

    withdrawn = sorted(
        flag.field_name for flag, value in flags.items()
        if not value and getattr(record, flag.field_name)
    )
    if withdrawn:
        raise ValidationFailed(
            'Confirmations cannot be withdrawn.',
            errors={field: ['This confirmation has already been given.'] for field in withdrawn}
        )

    wanted = {
        flag for flag, value in flags.items()
        if value and not getattr(record, flag.field_name)
    }

    def merged(flag):
        return flag in wanted or getattr(record, flag.field_name)

    pickup_confirmed = (
        merged(ProgressFlag.PICKUP_CONFIRMED_BY_DONOR)
        and merged(ProgressFlag.PICKUP_CONFIRMED_BY_RECEIVER)
    )
    return_signaled = merged(ProgressFlag.RETURN_SIGNALED_BY_RECEIVER)
    checkpoints = {flag.checkpoint for flag in wanted}

    if Checkpoint.COMPLETION in checkpoints and not pickup_confirmed:
        raise ValidationFailed('Pickup must be confirmed by both parties before completion.')

    if Checkpoint.RETURN_SIGNAL in checkpoints and not pickup_confirmed:
        raise ValidationFailed('Pickup must be confirmed by both parties before a return.')

    if Checkpoint.COMPLETION in checkpoints and return_signaled:
        raise ValidationFailed('Completion cannot be confirmed while a return is pending.')

    if Checkpoint.RETURN_CONFIRM in checkpoints and not return_signaled:
        raise ValidationFailed('A return must be signaled before it can be confirmed.')

    if wanted:
        updates = {flag.field_name: True for flag in wanted}
        DonationProgress.objects.filter(pk=record.pk).update(
            updated_at=timezone.now(), **updates
        )
        record.refresh_from_db()
        logger.info(
            f"Progress flags updated. Donation ID: {donation_id}, "
            f"Party: {actor_role.value}, Flags: {', '.join(sorted(updates))}"
        )

    return FlagUpdateResult(
        progress=record,
        pickup_confirmed=record.pickup_confirmed,
        completion_confirmed=record.completion_confirmed,
        return_completed=record.return_completed,
    )


def summarize(donation_id):
    """
    Read-only view of a donation's progress.

    Returns:
        dict: has_progress, pickup_confirmed, completion_confirmed,
        return_in_progress, return_completed and the raw flags
    """
    record = DonationProgress.objects.filter(donation_id=donation_id).first()
    if record is None:
        return {
            'has_progress': False,
            'pickup_confirmed': False,
            'completion_confirmed': False,
            'return_in_progress': False,
            'return_completed': False,
            'progress': None,
        }
    return {
        'has_progress': True,
        'pickup_confirmed': record.pickup_confirmed,
        'completion_confirmed': record.completion_confirmed,
        'return_in_progress': record.return_in_progress,
        'return_completed': record.return_completed,
        'progress': record.flags(),
    }
