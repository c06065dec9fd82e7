# Check Donation Invariants Management Command
from django.core.management.base import BaseCommand
from django.db import transaction
from django.db.models import Max, Q

from core.models import Candidacy, Donation, DonationCounter, DonationProgress
from core.services import progress


class Command(BaseCommand):
    help = 'Reports (and optionally repairs) donations whose stored state breaks the lifecycle rules.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--fix',
            action='store_true',
            help='Repair the problems that can be repaired safely.',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what --fix would change without saving anything.',
        )

    def handle(self, *args, **options):
        fix = options['fix'] or options['dry_run']
        dry_run = options['dry_run']

        self.problems = 0
        self.repaired = 0

        with transaction.atomic():
            self.check_receiver_status(fix, dry_run)
            self.check_missing_progress(fix, dry_run)
            self.check_orphan_progress(fix, dry_run)
            self.check_progress_flags(fix, dry_run)
            self.check_lingering_candidacies(fix, dry_run)
            self.check_return_reasons(fix, dry_run)
            self.check_counter(fix, dry_run)

            if dry_run:
                transaction.set_rollback(True)

        if not self.problems:
            self.stdout.write(self.style.SUCCESS('No problems found.'))
        elif dry_run:
            self.stdout.write(self.style.WARNING(
                f'Dry run completed. {self.problems} problems found, no changes saved.'
            ))
        elif fix:
            self.stdout.write(self.style.SUCCESS(
                f'{self.problems} problems found, {self.repaired} repaired.'
            ))
        else:
            self.stdout.write(self.style.WARNING(
                f'{self.problems} problems found. Run with --fix to repair them.'
            ))

    def report(self, message, dry_run):
        self.problems += 1
        prefix = '  [DRY-RUN] ' if dry_run else '  '
        self.stdout.write(f'{prefix}{message}')

    def check_receiver_status(self, fix, dry_run):
        self.stdout.write('Checking that receivers match the donation status...')
        without_receiver = Donation.objects.filter(
            status__in=Donation.RECEIVER_STATUSES, receiver__isnull=True
        )
        for donation in without_receiver:
            self.report(f'Donation {donation.sequential_id} ({donation.status}) has no receiver.', dry_run)
            if fix:
                progress.delete(donation.pk)
                Donation.objects.filter(pk=donation.pk).update(
                    status=Donation.STATUS_OPEN, return_reason=None
                )
                self.repaired += 1

        with_receiver = Donation.objects.exclude(
            status__in=Donation.RECEIVER_STATUSES
        ).filter(receiver__isnull=False)
        for donation in with_receiver:
            self.report(
                f'Donation {donation.sequential_id} ({donation.status}) still has a receiver.',
                dry_run
            )
            if fix:
                updates = {'receiver': None}
                if donation.status == Donation.STATUS_COMPLETED and donation.recipient_id is None:
                    updates['recipient_id'] = donation.receiver_id
                Donation.objects.filter(pk=donation.pk).update(**updates)
                self.repaired += 1

    def check_missing_progress(self, fix, dry_run):
        self.stdout.write('Checking donations with a receiver but no progress record...')
        missing = Donation.objects.filter(
            status__in=Donation.RECEIVER_STATUSES, progress__isnull=True
        )
        for donation in missing:
            self.report(f'Donation {donation.sequential_id} ({donation.status}) has no progress record.', dry_run)
            if fix:
                progress.initialize(donation.pk)
                self.repaired += 1

    def check_orphan_progress(self, fix, dry_run):
        self.stdout.write('Checking progress records of donations without a receiver...')
        orphans = DonationProgress.objects.exclude(
            donation__status__in=Donation.RECEIVER_STATUSES
        ).select_related('donation')
        for record in orphans:
            self.report(
                f'Donation {record.donation.sequential_id} ({record.donation.status}) '
                f'still has a progress record.',
                dry_run
            )
            if fix:
                progress.delete(record.donation_id)
                self.repaired += 1

    def check_progress_flags(self, fix, dry_run):
        self.stdout.write('Checking progress flags against the donation status...')
        beyond_pickup = Q(completion_confirmed_by_donor=True) | Q(completion_confirmed_by_receiver=True)
        return_flags = (
            Q(return_signaled_by_receiver=True)
            | Q(return_confirmed_by_donor=True)
            | Q(return_confirmed_by_receiver=True)
        )

        # Nothing past the pickup can be confirmed before the pickup itself
        premature = DonationProgress.objects.filter(
            beyond_pickup | return_flags,
            donation__status=Donation.STATUS_IN_PROGRESS,
        ).select_related('donation')
        for record in premature:
            self.report(
                f'Donation {record.donation.sequential_id} (IN_PROGRESS) has confirmations '
                f'beyond the pickup.',
                dry_run
            )
            if fix:
                progress.reset(record.donation_id)
                self.repaired += 1

        unexplained = DonationProgress.objects.filter(
            return_flags,
            donation__status=Donation.STATUS_PICKED_UP,
            donation__return_reason__isnull=True,
        ).select_related('donation')
        for record in unexplained:
            self.report(
                f'Donation {record.donation.sequential_id} (PICKED_UP) has return flags '
                f'but no return reason.',
                dry_run
            )
            if fix:
                progress.reset_return_process(record.donation_id)
                self.repaired += 1

    def check_lingering_candidacies(self, fix, dry_run):
        self.stdout.write('Checking candidacies on donations that are not open...')
        lingering = Candidacy.objects.exclude(donation__status=Donation.STATUS_OPEN)
        count = lingering.count()
        if count:
            self.report(f'{count} candidacies belong to donations that are not open.', dry_run)
            if fix:
                lingering.delete()
                self.repaired += 1

    def check_return_reasons(self, fix, dry_run):
        self.stdout.write('Checking return reasons outside of PICKED_UP...')
        stale = Donation.objects.filter(return_reason__isnull=False).exclude(
            status=Donation.STATUS_PICKED_UP
        )
        for donation in stale:
            self.report(f'Donation {donation.sequential_id} ({donation.status}) keeps a return reason.', dry_run)
            if fix:
                Donation.objects.filter(pk=donation.pk).update(return_reason=None)
                self.repaired += 1

    def check_counter(self, fix, dry_run):
        self.stdout.write('Checking the sequential number counter...')
        highest = Donation.objects.aggregate(highest=Max('sequential_id'))['highest'] or 0
        counter, _ = DonationCounter.objects.get_or_create(name=DonationCounter.DONATION_SEQUENCE)
        if counter.value < highest:
            self.report(
                f'Counter is at {counter.value} but donation {highest} exists.',
                dry_run
            )
            if fix:
                DonationCounter.objects.filter(pk=counter.pk).update(value=highest)
                self.repaired += 1
