"""
Tests for donation numbering and the model-level lifecycle invariants.
"""

import threading

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import IntegrityError, connection, transaction
from django.test import TestCase, TransactionTestCase

from core.models import Donation, DonationCounter
from core.services import lifecycle

User = get_user_model()


DONATION_FIELDS = {
    'title': 'Baby clothes',
    'description': 'A bag of baby clothes for 0 to 6 months.',
    'category': 'CLOTHING',
    'pickup_type': Donation.PICKUP_ARRANGE_WITH_DONOR,
    'postal_code': '70040-010',
    'street': 'Eixo Monumental',
    'location_number': '1',
    'neighborhood': 'Asa Norte',
    'city': 'Brasilia',
    'state': 'DF',
}


class DonationCounterTests(TestCase):

    def test_first_value_is_one(self):
        self.assertEqual(DonationCounter.next_value(), 1)

    def test_values_increase_by_one(self):
        values = [DonationCounter.next_value() for _ in range(3)]
        self.assertEqual(values, [1, 2, 3])

    def test_counters_are_independent(self):
        DonationCounter.next_value()
        self.assertEqual(DonationCounter.next_value('other_sequence'), 1)


class DonationModelInvariantTests(TestCase):
    """The model refuses states the lifecycle never produces."""

    def setUp(self):
        self.donor = User.objects.create_user(
            username='donor', email='donor@test.com', password='testpass123'
        )
        self.receiver = User.objects.create_user(
            username='receiver', email='receiver@test.com', password='testpass123'
        )
        self.donation = lifecycle.create_donation(self.donor.id, dict(DONATION_FIELDS))

    def test_in_progress_requires_receiver(self):
        self.donation.status = Donation.STATUS_IN_PROGRESS
        with self.assertRaises(ValidationError):
            self.donation.save()

    def test_open_donation_cannot_have_receiver(self):
        self.donation.receiver = self.receiver
        with self.assertRaises(ValidationError):
            self.donation.save()

    def test_donor_cannot_be_receiver(self):
        self.donation.status = Donation.STATUS_IN_PROGRESS
        self.donation.receiver = self.donor
        with self.assertRaises(ValidationError):
            self.donation.save()

    def test_return_reason_only_when_picked_up(self):
        self.donation.return_reason = 'Does not fit my child.'
        with self.assertRaises(ValidationError):
            self.donation.save()

    def test_database_constraint_backs_the_receiver_rule(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Donation.objects.filter(pk=self.donation.pk).update(
                    status=Donation.STATUS_IN_PROGRESS
                )

    def test_sequential_id_is_unique(self):
        duplicate = Donation(
            donor=self.donor,
            sequential_id=self.donation.sequential_id,
            **DONATION_FIELDS
        )
        with self.assertRaises(ValidationError):
            duplicate.save()


class ConcurrentNumberingTests(TransactionTestCase):
    """
    Concurrent donation creation.

    Uses TransactionTestCase for proper database visibility across threads.
    """

    def setUp(self):
        self.donors = [
            User.objects.create_user(
                username=f'donor{i}', email=f'donor{i}@test.com', password='testpass123'
            )
            for i in range(5)
        ]

    def test_concurrent_creations_get_distinct_numbers(self):
        errors = []
        barrier = threading.Barrier(len(self.donors))

        def create(donor):
            try:
                barrier.wait(timeout=10)
                lifecycle.create_donation(donor.id, dict(DONATION_FIELDS))
            except Exception as exc:
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=create, args=(donor,)) for donor in self.donors]

        # Start all threads
        for thread in threads:
            thread.start()

        # Wait for all threads to complete
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        numbers = sorted(Donation.objects.values_list('sequential_id', flat=True))
        self.assertEqual(numbers, [1, 2, 3, 4, 5])
        counter = DonationCounter.objects.get(name=DonationCounter.DONATION_SEQUENCE)
        self.assertEqual(counter.value, 5)
