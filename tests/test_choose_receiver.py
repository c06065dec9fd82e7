"""
Tests for choosing a receiver.

Tests cover:
- API: donor only, candidacy required, response body
- Candidacies purged (including the chosen one)
- Second selection refused
- A failure midway rolls everything back
- Concurrent selections: exactly one succeeds, never two receivers
- Simultaneous pickup confirmations are both kept
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase
from rest_framework import status
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from core.exceptions import Conflict, ValidationFailed
from core.models import Candidacy, Donation, DonationEditHistory, DonationProgress
from core.services import lifecycle

User = get_user_model()


DONATION_FIELDS = {
    'title': 'Microwave oven',
    'description': '20 litre microwave, works perfectly.',
    'category': 'APPLIANCES',
    'pickup_type': Donation.PICKUP_AT_LOCATION,
    'postal_code': '80010000',
    'street': 'Rua XV de Novembro',
    'location_number': '220',
    'neighborhood': 'Centro',
    'city': 'Curitiba',
    'state': 'PR',
}


class ChooseReceiverAPITests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.donor = User.objects.create_user(
            email='donor@test.com', username='donor', password='TestPass123!', name='Donor'
        )
        self.first = User.objects.create_user(
            email='first@test.com', username='first', password='TestPass123!', name='First'
        )
        self.second = User.objects.create_user(
            email='second@test.com', username='second', password='TestPass123!', name='Second'
        )
        self.donation = lifecycle.create_donation(self.donor.id, dict(DONATION_FIELDS))
        lifecycle.apply_for_donation(self.donation.pk, self.first.id)
        lifecycle.apply_for_donation(self.donation.pk, self.second.id)
        self.url = f'/api/donations/{self.donation.pk}/choose-receiver/'

    def authenticate(self, user):
        refresh = RefreshToken.for_user(user)
        self.client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')

    def test_donor_chooses_receiver(self):
        self.authenticate(self.donor)
        response = self.client.post(self.url, {'receiver_id': self.first.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], Donation.STATUS_IN_PROGRESS)
        self.assertEqual(response.data['receiver']['id'], self.first.id)
        self.assertTrue(response.data['progress']['has_progress'])

    def test_all_candidacies_purged(self):
        self.authenticate(self.donor)
        self.client.post(self.url, {'receiver_id': self.first.id}, format='json')
        self.assertFalse(Candidacy.objects.filter(donation=self.donation).exists())

    def test_selection_recorded_in_history(self):
        self.authenticate(self.donor)
        self.client.post(self.url, {'receiver_id': self.first.id}, format='json')

        entry = DonationEditHistory.objects.get(donation=self.donation)
        self.assertEqual(entry.edited_by_id, self.donor.id)
        self.assertEqual(entry.changes['status'], {
            'old_value': Donation.STATUS_OPEN,
            'new_value': Donation.STATUS_IN_PROGRESS,
        })
        self.assertEqual(entry.changes['receiver']['new_value'], self.first.id)

    def test_non_donor_forbidden(self):
        self.authenticate(self.second)
        response = self.client.post(self.url, {'receiver_id': self.first.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_user_without_candidacy_rejected(self):
        outsider = User.objects.create_user(
            email='outsider@test.com', username='outsider', password='TestPass123!'
        )
        self.authenticate(self.donor)
        response = self.client.post(self.url, {'receiver_id': outsider.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('receiver_id', response.data['errors'])

    def test_missing_receiver_id(self):
        self.authenticate(self.donor)
        response = self.client.post(self.url, {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_second_selection_rejected(self):
        self.authenticate(self.donor)
        self.client.post(self.url, {'receiver_id': self.first.id}, format='json')
        response = self.client.post(self.url, {'receiver_id': self.second.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.donation.refresh_from_db()
        self.assertEqual(self.donation.receiver_id, self.first.id)

    def test_contact_details_hidden_from_others(self):
        lifecycle.choose_receiver(self.donation.pk, self.donor.id, self.first.id)

        self.authenticate(self.second)
        response = self.client.get(f'/api/donations/{self.donation.pk}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['street'])
        self.assertIsNone(response.data['progress'])
        self.assertNotIn('email', response.data['donor'])
        self.assertFalse(response.data['is_party'])

        self.authenticate(self.first)
        response = self.client.get(f'/api/donations/{self.donation.pk}/')
        self.assertEqual(response.data['street'], DONATION_FIELDS['street'])
        self.assertEqual(response.data['donor']['email'], self.donor.email)
        self.assertTrue(response.data['is_party'])


class ChooseReceiverRollbackTests(TestCase):
    """A failure after the status switch leaves the donation untouched."""

    def setUp(self):
        self.donor = User.objects.create_user(
            email='donor@test.com', username='donor', password='TestPass123!'
        )
        self.first = User.objects.create_user(
            email='first@test.com', username='first', password='TestPass123!'
        )
        self.second = User.objects.create_user(
            email='second@test.com', username='second', password='TestPass123!'
        )
        self.donation = lifecycle.create_donation(self.donor.id, dict(DONATION_FIELDS))
        lifecycle.apply_for_donation(self.donation.pk, self.first.id)
        lifecycle.apply_for_donation(self.donation.pk, self.second.id)

    def assert_untouched(self):
        self.donation.refresh_from_db()
        self.assertEqual(self.donation.status, Donation.STATUS_OPEN)
        self.assertIsNone(self.donation.receiver_id)
        self.assertFalse(DonationProgress.objects.filter(donation=self.donation).exists())
        self.assertEqual(Candidacy.objects.filter(donation=self.donation).count(), 2)
        self.assertFalse(DonationEditHistory.objects.filter(donation=self.donation).exists())

    def test_failed_candidacy_purge_rolls_back(self):
        with patch('core.services.candidacy.purge_all', side_effect=DatabaseError('disk full')):
            with self.assertRaises(DatabaseError):
                lifecycle.choose_receiver(self.donation.pk, self.donor.id, self.first.id)

        self.assert_untouched()

    def test_failed_progress_creation_rolls_back(self):
        with patch('core.services.progress.initialize', side_effect=DatabaseError('disk full')):
            with self.assertRaises(DatabaseError):
                lifecycle.choose_receiver(self.donation.pk, self.donor.id, self.first.id)

        self.assert_untouched()

    def test_failure_is_an_opaque_500_over_the_api(self):
        client = APIClient()
        refresh = RefreshToken.for_user(self.donor)
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')

        with patch('core.services.candidacy.purge_all', side_effect=DatabaseError('disk full')):
            response = client.post(
                f'/api/donations/{self.donation.pk}/choose-receiver/',
                {'receiver_id': self.first.id},
                format='json'
            )

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assert_untouched()


class ConcurrentChooseReceiverTests(TransactionTestCase):
    """
    Requests racing on the same donation.

    Uses TransactionTestCase so each thread sees committed data through its
    own database connection. A barrier releases both threads together.
    """

    def setUp(self):
        self.donor = User.objects.create_user(
            email='donor@test.com', username='donor', password='TestPass123!'
        )
        self.first = User.objects.create_user(
            email='first@test.com', username='first', password='TestPass123!'
        )
        self.second = User.objects.create_user(
            email='second@test.com', username='second', password='TestPass123!'
        )
        self.donation = lifecycle.create_donation(self.donor.id, dict(DONATION_FIELDS))
        lifecycle.apply_for_donation(self.donation.pk, self.first.id)
        lifecycle.apply_for_donation(self.donation.pk, self.second.id)

    def run_together(self, *calls):
        barrier = threading.Barrier(len(calls))

        def run(call):
            try:
                barrier.wait(timeout=10)
                call()
                return 'success'
            except (ValidationFailed, Conflict) as exc:
                return exc.__class__.__name__
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=len(calls)) as executor:
            return list(executor.map(run, calls))

    def choose(self, receiver_id):
        return lambda: lifecycle.choose_receiver(self.donation.pk, self.donor.id, receiver_id)

    def test_exactly_one_selection_succeeds(self):
        results = self.run_together(self.choose(self.first.id), self.choose(self.second.id))

        self.assertEqual(sorted(results), ['ValidationFailed', 'success'])

        self.donation.refresh_from_db()
        self.assertEqual(self.donation.status, Donation.STATUS_IN_PROGRESS)
        self.assertIn(self.donation.receiver_id, [self.first.id, self.second.id])
        self.assertEqual(DonationProgress.objects.filter(donation=self.donation).count(), 1)
        self.assertFalse(Candidacy.objects.filter(donation=self.donation).exists())
        self.assertEqual(DonationEditHistory.objects.filter(donation=self.donation).count(), 1)

    def test_sequential_selections(self):
        self.assertEqual(self.run_together(self.choose(self.first.id)), ['success'])
        self.assertEqual(self.run_together(self.choose(self.second.id)), ['ValidationFailed'])

    def test_simultaneous_pickup_confirmations_both_count(self):
        lifecycle.choose_receiver(self.donation.pk, self.donor.id, self.first.id)

        results = self.run_together(
            lambda: lifecycle.update_progress(
                self.donation.pk, self.donor.id, {'pickup_confirmed_by_donor': True}
            ),
            lambda: lifecycle.update_progress(
                self.donation.pk, self.first.id, {'pickup_confirmed_by_receiver': True}
            ),
        )

        self.assertEqual(results, ['success', 'success'])
        self.donation.refresh_from_db()
        self.assertEqual(self.donation.status, Donation.STATUS_PICKED_UP)
        record = DonationProgress.objects.get(donation=self.donation)
        self.assertTrue(record.pickup_confirmed_by_donor)
        self.assertTrue(record.pickup_confirmed_by_receiver)
