"""
Tests for the edit history recorder and the history endpoints.
"""

import pytest
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from rest_framework import status
from rest_framework.test import APIClient

from core.models import Donation, DonationEditHistory
from core.services import history, lifecycle

User = get_user_model()


DONATION_FIELDS = {
    'title': 'Rice and beans',
    'description': 'Ten kilos of rice and five of beans, sealed.',
    'category': 'FOOD',
    'pickup_type': Donation.PICKUP_AT_LOCATION,
    'postal_code': '60060-170',
    'street': 'Rua Guilherme Rocha',
    'location_number': '45',
    'neighborhood': 'Centro',
    'city': 'Fortaleza',
    'state': 'CE',
}


@pytest.fixture
def donor(db):
    return User.objects.create_user(
        email='donor@test.com', username='donor', password='TestPass123!'
    )


@pytest.fixture
def donation(donor):
    return lifecycle.create_donation(donor.id, dict(DONATION_FIELDS))


class TestDiff:

    def test_no_changes(self):
        assert history.diff({'title': 'Rice'}, {'title': 'Rice'}) == {}

    def test_single_change(self):
        changes = history.diff({'title': 'Rice', 'city': 'Fortaleza'}, {'title': 'Beans'})
        assert changes == {'title': {'old_value': 'Rice', 'new_value': 'Beans'}}

    def test_only_requested_keys_are_compared(self):
        assert history.diff({'title': 'Rice', 'city': 'Fortaleza'}, {}) == {}

    def test_diff_against_model_instance(self):
        donation = Donation(title='Rice and beans', city='Fortaleza')
        changes = history.diff(donation, {'title': 'Rice and beans', 'city': 'Recife'})
        assert changes == {'city': {'old_value': 'Fortaleza', 'new_value': 'Recife'}}


@pytest.mark.django_db
class TestRecord:

    def test_empty_changes_write_nothing(self, donation):
        assert history.record(history.OWNER_DONATION, donation.pk, {}) is None
        assert not DonationEditHistory.objects.filter(donation=donation).exists()

    def test_unchanged_update_records_nothing(self, donation, donor):
        lifecycle.update_donation(donation.pk, donor.id, {'title': DONATION_FIELDS['title']})
        assert not DonationEditHistory.objects.filter(donation=donation).exists()

    def test_single_field_change_records_one_entry(self, donation, donor):
        lifecycle.update_donation(donation.pk, donor.id, {'title': 'Rice, beans and pasta'})

        entry = DonationEditHistory.objects.get(donation=donation)
        assert entry.edited_by_id == donor.id
        assert entry.changes == {
            'title': {'old_value': 'Rice and beans', 'new_value': 'Rice, beans and pasta'}
        }

    def test_entries_are_immutable(self, donation, donor):
        lifecycle.update_donation(donation.pk, donor.id, {'title': 'Rice, beans and pasta'})
        entry = DonationEditHistory.objects.get(donation=donation)
        entry.changes = {}
        with pytest.raises(ValidationError):
            entry.save()

    def test_list_entries_newest_first(self, donation, donor):
        lifecycle.update_donation(donation.pk, donor.id, {'title': 'Rice, beans and pasta'})
        lifecycle.update_donation(donation.pk, donor.id, {'city': 'Caucaia'})

        entries = list(history.list_entries(history.OWNER_DONATION, donation.pk))
        assert list(entries[0].changes) == ['city']
        assert list(entries[1].changes) == ['title']

    def test_unknown_owner_type(self, donation):
        with pytest.raises(ValueError):
            history.list_entries('invoice', donation.pk)


@pytest.mark.django_db
class TestHistoryEndpoint:

    def test_donation_history_is_public(self, donation, donor):
        lifecycle.update_donation(donation.pk, donor.id, {'title': 'Rice, beans and pasta'})

        response = APIClient().get(f'/api/donations/{donation.pk}/history/')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == 1
        assert response.data['results'][0]['changes']['title']['new_value'] == 'Rice, beans and pasta'
        assert response.data['results'][0]['edited_by'] == donor.id

    def test_history_of_unknown_donation(self, db):
        response = APIClient().get('/api/donations/00000000-0000-0000-0000-000000000000/history/')
        assert response.status_code == status.HTTP_404_NOT_FOUND
