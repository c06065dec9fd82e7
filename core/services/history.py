"""
Edit history recorder.

Computes field-level diffs between an entity and a partial update and appends
immutable history entries. Donation history is public; profile history is
readable by its owner only (enforced by the profile service).

A diff maps each changed field to ``{"old_value": ..., "new_value": ...}``.
An empty diff means nothing changed and no entry is written.
"""

import logging
from collections.abc import Mapping

from core.models import DonationEditHistory, ProfileEditHistory

logger = logging.getLogger(__name__)

OWNER_DONATION = 'donation'
OWNER_PROFILE = 'profile'

_HISTORY_MODELS = {
    OWNER_DONATION: (DonationEditHistory, 'donation_id'),
    OWNER_PROFILE: (ProfileEditHistory, 'user_id'),
}


def _history_model(owner_type):
    try:
        return _HISTORY_MODELS[owner_type]
    except KeyError:
        raise ValueError(f'Unknown history owner type: {owner_type!r}')


def _current_value(entity, field):
    if isinstance(entity, Mapping):
        return entity.get(field)
    return getattr(entity, field, None)


def diff(old_entity, new_partial):
    """
    Compute the changes a partial update would make.

    Only keys present in ``new_partial`` are considered; a key whose value
    equals the current one is left out.

    Args:
        old_entity: Model instance or mapping holding the current values
        new_partial: Mapping of field name to requested value

    Returns:
        dict: field -> {'old_value': ..., 'new_value': ...}
    """
    changes = {}
    for field, new_value in new_partial.items():
        old_value = _current_value(old_entity, field)
        if old_value != new_value:
            changes[field] = {'old_value': old_value, 'new_value': new_value}
    return changes


def record(owner_type, owner_id, changes, edited_by_id=None):
    """
    Append a history entry for an owner.

    Args:
        owner_type: OWNER_DONATION or OWNER_PROFILE
        owner_id: Primary key of the donation or user
        changes: Diff produced by ``diff``
        edited_by_id: Acting user, kept for donation entries

    Returns:
        The created entry, or None when ``changes`` is empty
    """
    if not changes:
        return None

    model, owner_field = _history_model(owner_type)
    fields = {owner_field: owner_id, 'changes': changes}
    if owner_type == OWNER_DONATION:
        fields['edited_by_id'] = edited_by_id

    entry = model.objects.create(**fields)
    logger.debug(
        f"Edit history recorded. Owner: {owner_type} {owner_id}, "
        f"Fields: {', '.join(sorted(changes))}"
    )
    return entry


def list_entries(owner_type, owner_id):
    """Return the owner's history entries, newest first."""
    model, owner_field = _history_model(owner_type)
    return model.objects.filter(**{owner_field: owner_id}).order_by('-edited_at', '-id')


def delete_all(owner_type, owner_id):
    """
    Remove every entry of an owner.

    Only used while the owner itself is being deleted.

    Returns:
        int: Number of entries removed
    """
    model, owner_field = _history_model(owner_type)
    deleted, _ = model.objects.filter(**{owner_field: owner_id}).delete()
    return deleted
