"""
Service-level tests for the donation lifecycle engine.

Tests cover:
- Creation with sequential numbers
- Editing and deleting OPEN donations only (donor only)
- Choosing a receiver, cancelling receiving
- Pickup and completion round trip up to COMPLETED
- Receiver present exactly while IN_PROGRESS or PICKED_UP
- Ordered cleanup on delete
"""

import pytest
from django.contrib.auth import get_user_model

from core.exceptions import Forbidden, NotFound, ValidationFailed
from core.models import Candidacy, Donation, DonationEditHistory, DonationProgress
from core.services import candidacy, lifecycle

User = get_user_model()


DONATION_FIELDS = {
    'title': 'Two-seat sofa',
    'description': 'Grey fabric sofa, clean and in good condition.',
    'category': 'FURNITURE',
    'pickup_type': Donation.PICKUP_ARRANGE_WITH_DONOR,
    'postal_code': '20040-020',
    'street': 'Rua da Assembleia',
    'location_number': '10',
    'neighborhood': 'Centro',
    'city': 'Rio de Janeiro',
    'state': 'RJ',
}


@pytest.fixture
def donor(db):
    return User.objects.create_user(
        email='donor@test.com', username='donor', password='TestPass123!', name='Donor'
    )


@pytest.fixture
def user_a(db):
    return User.objects.create_user(
        email='usera@test.com', username='usera', password='TestPass123!', name='User A'
    )


@pytest.fixture
def user_b(db):
    return User.objects.create_user(
        email='userb@test.com', username='userb', password='TestPass123!', name='User B'
    )


@pytest.fixture
def donation(donor):
    return lifecycle.create_donation(donor.id, dict(DONATION_FIELDS))


@pytest.fixture
def in_progress(donation, donor, user_a):
    lifecycle.apply_for_donation(donation.pk, user_a.id)
    return lifecycle.choose_receiver(donation.pk, donor.id, user_a.id)


@pytest.fixture
def picked_up(in_progress, donor, user_a):
    lifecycle.update_progress(in_progress.pk, donor.id, {'pickup_confirmed_by_donor': True})
    return lifecycle.update_progress(in_progress.pk, user_a.id, {'pickup_confirmed_by_receiver': True})


def assert_receiver_invariant(donation):
    donation.refresh_from_db()
    has_receiver = donation.receiver_id is not None
    assert has_receiver == (donation.status in Donation.RECEIVER_STATUSES)
    has_progress = DonationProgress.objects.filter(donation_id=donation.pk).exists()
    assert has_progress == has_receiver


@pytest.mark.django_db
class TestCreateDonation:

    def test_creates_open_donation(self, donation, donor):
        assert donation.status == Donation.STATUS_OPEN
        assert donation.donor_id == donor.id
        assert donation.receiver_id is None
        assert_receiver_invariant(donation)

    def test_sequential_ids_increase(self, donor):
        first = lifecycle.create_donation(donor.id, dict(DONATION_FIELDS))
        second = lifecycle.create_donation(donor.id, dict(DONATION_FIELDS))
        assert second.sequential_id == first.sequential_id + 1

    def test_state_is_upper_cased_and_text_trimmed(self, donor):
        fields = dict(DONATION_FIELDS, state='rj', title='  Two-seat sofa  ')
        created = lifecycle.create_donation(donor.id, fields)
        assert created.state == 'RJ'
        assert created.title == 'Two-seat sofa'

    def test_invalid_fields_fail_validation(self, donor):
        with pytest.raises(ValidationFailed) as excinfo:
            lifecycle.create_donation(donor.id, dict(DONATION_FIELDS, title='abc'))
        assert 'title' in excinfo.value.errors

    def test_invalid_postal_code(self, donor):
        with pytest.raises(ValidationFailed):
            lifecycle.create_donation(donor.id, dict(DONATION_FIELDS, postal_code='1234'))

    def test_failed_creation_does_not_consume_number(self, donor):
        first = lifecycle.create_donation(donor.id, dict(DONATION_FIELDS))
        with pytest.raises(ValidationFailed):
            lifecycle.create_donation(donor.id, dict(DONATION_FIELDS, category='TOYS'))
        second = lifecycle.create_donation(donor.id, dict(DONATION_FIELDS))
        assert second.sequential_id == first.sequential_id + 1

    def test_unknown_donor(self, db):
        with pytest.raises(NotFound):
            lifecycle.create_donation(999999, dict(DONATION_FIELDS))

    def test_unknown_fields_rejected(self, donor):
        with pytest.raises(ValidationFailed):
            lifecycle.create_donation(donor.id, dict(DONATION_FIELDS, status='COMPLETED'))


@pytest.mark.django_db
class TestUpdateAndDelete:

    def test_donor_updates_open_donation(self, donation, donor):
        updated = lifecycle.update_donation(donation.pk, donor.id, {'title': 'Three-seat sofa'})
        assert updated.title == 'Three-seat sofa'

    def test_other_user_cannot_update(self, donation, user_a):
        with pytest.raises(Forbidden):
            lifecycle.update_donation(donation.pk, user_a.id, {'title': 'Three-seat sofa'})

    def test_empty_update_rejected(self, donation, donor):
        with pytest.raises(ValidationFailed):
            lifecycle.update_donation(donation.pk, donor.id, {})

    def test_update_after_receiver_chosen_rejected(self, in_progress, donor):
        with pytest.raises(ValidationFailed):
            lifecycle.update_donation(in_progress.pk, donor.id, {'title': 'Three-seat sofa'})

    def test_unknown_donation(self, donor):
        with pytest.raises(NotFound):
            lifecycle.update_donation('not-a-uuid', donor.id, {'title': 'Three-seat sofa'})

    def test_delete_removes_candidacies_and_history(self, donation, donor, user_a, user_b):
        lifecycle.update_donation(donation.pk, donor.id, {'title': 'Three-seat sofa'})
        lifecycle.apply_for_donation(donation.pk, user_a.id)
        lifecycle.apply_for_donation(donation.pk, user_b.id)

        removed = lifecycle.delete_donation(donation.pk, donor.id)

        assert removed == {'candidacies': 2, 'history_entries': 1}
        assert not Donation.objects.filter(pk=donation.pk).exists()
        assert not Candidacy.objects.filter(donation_id=donation.pk).exists()
        assert not DonationEditHistory.objects.filter(donation_id=donation.pk).exists()

    def test_delete_with_receiver_rejected(self, in_progress, donor):
        with pytest.raises(ValidationFailed):
            lifecycle.delete_donation(in_progress.pk, donor.id)
        assert Donation.objects.filter(pk=in_progress.pk).exists()

    def test_only_donor_deletes(self, donation, user_a):
        with pytest.raises(Forbidden):
            lifecycle.delete_donation(donation.pk, user_a.id)


@pytest.mark.django_db
class TestChooseReceiver:

    def test_moves_to_in_progress_and_purges_candidacies(self, donation, donor, user_a, user_b):
        lifecycle.apply_for_donation(donation.pk, user_a.id)
        lifecycle.apply_for_donation(donation.pk, user_b.id)

        chosen = lifecycle.choose_receiver(donation.pk, donor.id, user_a.id)

        assert chosen.status == Donation.STATUS_IN_PROGRESS
        assert chosen.receiver_id == user_a.id
        assert list(candidacy.list_for_donation(donation.pk)) == []
        assert_receiver_invariant(chosen)

    def test_requires_candidacy(self, donation, donor, user_a):
        with pytest.raises(ValidationFailed):
            lifecycle.choose_receiver(donation.pk, donor.id, user_a.id)
        assert_receiver_invariant(donation)

    def test_only_donor_chooses(self, donation, user_a, user_b):
        lifecycle.apply_for_donation(donation.pk, user_a.id)
        with pytest.raises(Forbidden):
            lifecycle.choose_receiver(donation.pk, user_b.id, user_a.id)

    def test_second_choice_rejected(self, in_progress, donor, user_b):
        with pytest.raises(ValidationFailed) as excinfo:
            lifecycle.choose_receiver(in_progress.pk, donor.id, user_b.id)
        assert excinfo.value.message == 'This donation already has a receiver.'


@pytest.mark.django_db
class TestCancelReceiving:

    def test_receiver_cancels(self, in_progress, user_a):
        reopened = lifecycle.cancel_receiving(in_progress.pk, user_a.id)
        assert reopened.status == Donation.STATUS_OPEN
        assert reopened.receiver_id is None
        assert_receiver_invariant(reopened)

    def test_donor_cannot_cancel(self, in_progress, donor):
        with pytest.raises(Forbidden):
            lifecycle.cancel_receiving(in_progress.pk, donor.id)

    def test_cannot_cancel_after_pickup(self, picked_up, user_a):
        with pytest.raises(ValidationFailed):
            lifecycle.cancel_receiving(picked_up.pk, user_a.id)

    def test_reopened_donation_accepts_new_candidacies(self, in_progress, user_a, user_b):
        lifecycle.cancel_receiving(in_progress.pk, user_a.id)
        lifecycle.apply_for_donation(in_progress.pk, user_a.id)
        lifecycle.apply_for_donation(in_progress.pk, user_b.id)
        assert candidacy.list_for_donation(in_progress.pk).count() == 2


@pytest.mark.django_db
class TestProgressRoundTrip:

    def test_single_pickup_confirmation_keeps_in_progress(self, in_progress, donor):
        donation = lifecycle.update_progress(in_progress.pk, donor.id, {'pickup_confirmed_by_donor': True})
        assert donation.status == Donation.STATUS_IN_PROGRESS

    def test_joint_pickup_moves_to_picked_up(self, picked_up):
        assert picked_up.status == Donation.STATUS_PICKED_UP
        assert_receiver_invariant(picked_up)

    def test_completion_round_trip(self, picked_up, donor, user_a):
        lifecycle.update_progress(picked_up.pk, donor.id, {'completion_confirmed_by_donor': True})
        completed = lifecycle.update_progress(
            picked_up.pk, user_a.id, {'completion_confirmed_by_receiver': True}
        )

        assert completed.status == Donation.STATUS_COMPLETED
        assert completed.receiver_id is None
        assert completed.recipient_id == user_a.id
        assert_receiver_invariant(completed)

        with pytest.raises(ValidationFailed):
            lifecycle.update_donation(completed.pk, donor.id, {'title': 'Three-seat sofa'})
        with pytest.raises(ValidationFailed):
            lifecycle.delete_donation(completed.pk, donor.id)

    def test_completion_before_pickup_rejected(self, in_progress, donor):
        with pytest.raises(ValidationFailed):
            lifecycle.update_progress(in_progress.pk, donor.id, {'completion_confirmed_by_donor': True})

    def test_foreign_flag_leaves_state_unchanged(self, in_progress, donor):
        with pytest.raises(Forbidden):
            lifecycle.update_progress(in_progress.pk, donor.id, {'pickup_confirmed_by_receiver': True})
        in_progress.refresh_from_db()
        assert in_progress.status == Donation.STATUS_IN_PROGRESS
        assert not any(DonationProgress.objects.get(donation_id=in_progress.pk).flags().values())

    def test_non_party_cannot_update(self, in_progress, user_b):
        with pytest.raises(Forbidden):
            lifecycle.update_progress(in_progress.pk, user_b.id, {'pickup_confirmed_by_receiver': True})

    def test_open_donation_has_no_progress(self, donation, donor):
        with pytest.raises(ValidationFailed):
            lifecycle.update_progress(donation.pk, donor.id, {'pickup_confirmed_by_donor': True})

    def test_receiver_must_use_signal_return(self, picked_up, user_a):
        with pytest.raises(ValidationFailed):
            lifecycle.update_progress(picked_up.pk, user_a.id, {'return_signaled_by_receiver': True})

    def test_get_progress_parties_only(self, in_progress, donor, user_a, user_b):
        assert lifecycle.get_progress(in_progress.pk, donor.id)['has_progress'] is True
        assert lifecycle.get_progress(in_progress.pk, user_a.id)['has_progress'] is True
        with pytest.raises(Forbidden):
            lifecycle.get_progress(in_progress.pk, user_b.id)

    def test_recipient_is_party_after_completion(self, picked_up, donor, user_a, user_b):
        lifecycle.update_progress(picked_up.pk, donor.id, {'completion_confirmed_by_donor': True})
        lifecycle.update_progress(picked_up.pk, user_a.id, {'completion_confirmed_by_receiver': True})

        assert lifecycle.is_party(picked_up.pk, user_a.id) is True
        assert lifecycle.is_party(picked_up.pk, user_b.id) is False
        assert picked_up.pk in {d.pk for d in lifecycle.list_received_donations(user_a.id)}


@pytest.mark.django_db
class TestListings:

    def test_filter_by_status_and_city(self, donation, in_progress, donor):
        other = lifecycle.create_donation(donor.id, dict(DONATION_FIELDS, city='Niteroi'))

        open_ids = {d.pk for d in lifecycle.filter_donations(status=Donation.STATUS_OPEN)}
        assert other.pk in open_ids
        assert in_progress.pk not in open_ids

        niteroi = list(lifecycle.filter_donations(city='niter'))
        assert [d.pk for d in niteroi] == [other.pk]

    def test_filter_rejects_unknown_status(self, db):
        with pytest.raises(ValidationFailed):
            lifecycle.filter_donations(status='LOST')

    def test_newest_first(self, donor):
        first = lifecycle.create_donation(donor.id, dict(DONATION_FIELDS))
        second = lifecycle.create_donation(donor.id, dict(DONATION_FIELDS))
        listed = [d.pk for d in lifecycle.list_donations_by_donor(donor.id)]
        assert listed.index(second.pk) < listed.index(first.pk)

    def test_get_donation_counts_candidacies(self, donation, user_a, user_b):
        lifecycle.apply_for_donation(donation.pk, user_a.id)
        lifecycle.apply_for_donation(donation.pk, user_b.id)
        assert lifecycle.get_donation(donation.pk).candidacy_count == 2
