"""
Data model for the donation exchange.

A donor lists an item (Donation), other users register interest (Candidacy),
the donor chooses one of them as receiver and both parties then confirm
pickup and completion on a shared ledger (DonationProgress). Every mutation
of a donation or a profile leaves an immutable edit history entry.
"""

import uuid

from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import MinLengthValidator
from django.db import models, transaction
from django.db.models import F, Q
from django.utils.translation import gettext_lazy as _

from .validators import (
    validate_phone_number,
    validate_postal_code,
    validate_profile_image,
    validate_state_code,
)


def user_profile_image_upload_path(instance, filename):
    """
    Generate upload path for user profile images.

    Path format: profile_images/{user_id}/{filename}
    If user_id is not yet available (user not saved), uses 'temp' as placeholder.

    Args:
        instance: User model instance
        filename: Original filename

    Returns:
        str: Upload path
    """
    user_id = instance.id if instance.id else 'temp'
    return f'profile_images/{user_id}/{filename}'


class User(AbstractUser):
    """
    Custom User model extending Django's AbstractUser.

    Additional fields:
    - email: Required, unique email address (used for login)
    - name: Display name shown on donations
    - phone_number / contact_email / contact_phone / social_networks:
      contact details, only disclosed to the other party of a donation
    - postal_code, street, house_number, neighborhood, city, state: address
    - biography: Short public description
    - profile_image: Optional profile picture
    - created_at / updated_at: Timestamps
    """

    # Fields a user may change through the profile endpoint. Every change to
    # one of them is recorded in ProfileEditHistory.
    PROFILE_FIELDS = [
        'name',
        'phone_number',
        'postal_code',
        'street',
        'house_number',
        'neighborhood',
        'city',
        'state',
        'biography',
        'contact_email',
        'contact_phone',
        'social_networks',
    ]

    email = models.EmailField(
        _('email address'),
        unique=True,
        blank=False,
        null=False,
        error_messages={
            'unique': _('A user with that email already exists.'),
        },
        help_text=_('Required. Enter a valid email address.')
    )

    name = models.CharField(
        _('name'),
        max_length=100,
        blank=True,
        default='',
        help_text=_('Display name.')
    )

    phone_number = models.CharField(
        _('phone number'),
        max_length=20,
        blank=True,
        default='',
        validators=[validate_phone_number],
        help_text=_('Optional. Phone number with area code, e.g. (11) 98765-4321.')
    )

    postal_code = models.CharField(
        _('postal code'),
        max_length=9,
        blank=True,
        default='',
        validators=[validate_postal_code]
    )

    street = models.CharField(_('street'), max_length=200, blank=True, default='')

    house_number = models.CharField(_('house number'), max_length=20, blank=True, default='')

    neighborhood = models.CharField(_('neighborhood'), max_length=100, blank=True, default='')

    city = models.CharField(_('city'), max_length=100, blank=True, default='')

    state = models.CharField(
        _('state'),
        max_length=2,
        blank=True,
        default='',
        validators=[validate_state_code]
    )

    biography = models.TextField(_('biography'), max_length=500, blank=True, default='')

    contact_email = models.EmailField(
        _('contact email'),
        blank=True,
        default='',
        help_text=_('Email shown to the other party of a donation.')
    )

    contact_phone = models.CharField(
        _('contact phone'),
        max_length=20,
        blank=True,
        default='',
        validators=[validate_phone_number]
    )

    social_networks = models.JSONField(
        _('social networks'),
        blank=True,
        default=dict,
        help_text=_('Mapping of network name to handle or URL.')
    )

    profile_image = models.ImageField(
        _('profile image'),
        upload_to=user_profile_image_upload_path,
        blank=True,
        null=True,
        validators=[validate_profile_image],
        help_text=_('Optional. Upload a profile picture (max 5MB, formats: jpg, png, webp).')
    )

    created_at = models.DateTimeField(
        _('created at'),
        auto_now_add=True,
        help_text=_('Timestamp when the account was created.')
    )

    updated_at = models.DateTimeField(
        _('updated at'),
        auto_now=True,
        help_text=_('Timestamp when the account was last updated.')
    )

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['city', 'state'], name='user_location_idx'),
        ]

    def __str__(self):
        """Return email as string representation."""
        return self.email or self.username

    def clean(self):
        """
        Validate model fields.

        Ensures:
        - Email is provided and lowercase for case-insensitive uniqueness
        - State is stored upper-case

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.email:
            self.email = self.email.lower()

        if not self.email:
            raise ValidationError({
                'email': _('Email address is required.')
            })

        if self.state:
            self.state = self.state.upper()

    def save(self, *args, **kwargs):
        """
        Override save to ensure validation and normalization.

        Creation skips full_clean so duplicate emails surface as the database
        IntegrityError; updates are fully validated.
        """
        if self.email:
            self.email = self.email.lower()
        if self.state:
            self.state = self.state.upper()

        if self.pk is not None:
            self.full_clean()

        # New users need an ID before the image path can be built
        if self.profile_image and not self.pk:
            profile_image_temp = self.profile_image
            self.profile_image = None
            super().save(*args, **kwargs)
            self.profile_image = profile_image_temp
            super().save(update_fields=['profile_image'])
        else:
            super().save(*args, **kwargs)


# ============================================================================
# Sequential Donation Number
# ============================================================================

class DonationCounter(models.Model):
    """
    Named monotonically increasing counter.

    The row for ``donation_sequential_id`` hands out the human-friendly
    donation numbers. Values are allocated by an atomic increment under a
    row lock, so concurrent creators never receive the same number.
    """

    DONATION_SEQUENCE = 'donation_sequential_id'

    name = models.CharField(_('name'), max_length=50, unique=True)

    value = models.PositiveBigIntegerField(_('value'), default=0)

    class Meta:
        verbose_name = _('donation counter')
        verbose_name_plural = _('donation counters')

    def __str__(self):
        return f"{self.name}={self.value}"

    @classmethod
    def next_value(cls, name=DONATION_SEQUENCE):
        """
        Increment the named counter and return the new value.

        Must be called inside the caller's transaction when the allocated
        number is written together with other records; it opens its own
        atomic block (a savepoint when nested) otherwise.

        Args:
            name: Counter name

        Returns:
            int: The freshly allocated value
        """
        with transaction.atomic():
            cls.objects.get_or_create(name=name)
            counter = cls.objects.select_for_update().get(name=name)
            cls.objects.filter(pk=counter.pk).update(value=F('value') + 1)
            counter.refresh_from_db(fields=['value'])
            return counter.value


# ============================================================================
# Donation
# ============================================================================

class Donation(models.Model):
    """
    An item offered by a donor.

    Fields:
    - sequential_id: Human-friendly number, allocated once at creation
    - title, description, category, pickup_type: What is offered and how
    - postal_code, street, location_number, neighborhood, city, state: Where
    - status: OPEN, IN_PROGRESS, PICKED_UP or COMPLETED
    - donor: Owner, immutable after creation
    - receiver: Chosen user, set only while IN_PROGRESS or PICKED_UP
    - recipient: The receiver that completed the exchange (COMPLETED only)
    - return_reason: Reason given by the receiver during an active return

    Status changes are made by the lifecycle service only, through
    conditional updates on ``status``.
    """

    STATUS_OPEN = 'OPEN'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_PICKED_UP = 'PICKED_UP'
    STATUS_COMPLETED = 'COMPLETED'

    STATUS_CHOICES = [
        (STATUS_OPEN, 'Open'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_PICKED_UP, 'Picked up'),
        (STATUS_COMPLETED, 'Completed'),
    ]

    # Statuses in which a receiver is attached to the donation
    RECEIVER_STATUSES = [STATUS_IN_PROGRESS, STATUS_PICKED_UP]

    CATEGORY_CHOICES = [
        ('FOOD', 'Food'),
        ('APPLIANCES', 'Appliances'),
        ('FURNITURE', 'Furniture'),
        ('CLOTHING', 'Clothing'),
        ('ELECTRONICS', 'Electronics'),
        ('EQUIPMENT', 'Equipment'),
        ('HOME', 'Home'),
    ]

    PICKUP_AT_LOCATION = 'PICK_UP_AT_LOCATION'
    PICKUP_ARRANGE_WITH_DONOR = 'ARRANGE_WITH_DONOR'

    PICKUP_TYPE_CHOICES = [
        (PICKUP_AT_LOCATION, 'Pick up at location'),
        (PICKUP_ARRANGE_WITH_DONOR, 'Arrange with donor'),
    ]

    # Fields the donor may change while the donation is OPEN
    EDITABLE_FIELDS = [
        'title',
        'description',
        'category',
        'pickup_type',
        'postal_code',
        'street',
        'location_number',
        'neighborhood',
        'city',
        'state',
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    sequential_id = models.PositiveIntegerField(
        _('sequential id'),
        unique=True,
        editable=False,
        help_text=_('Human-friendly donation number.')
    )

    title = models.CharField(
        _('title'),
        max_length=100,
        validators=[MinLengthValidator(5)],
        help_text=_('Between 5 and 100 characters.')
    )

    description = models.TextField(
        _('description'),
        max_length=1000,
        validators=[MinLengthValidator(10)],
        help_text=_('Between 10 and 1000 characters.')
    )

    category = models.CharField(_('category'), max_length=20, choices=CATEGORY_CHOICES)

    pickup_type = models.CharField(_('pickup type'), max_length=30, choices=PICKUP_TYPE_CHOICES)

    postal_code = models.CharField(
        _('postal code'),
        max_length=9,
        validators=[validate_postal_code]
    )

    street = models.CharField(_('street'), max_length=200, validators=[MinLengthValidator(3)])

    location_number = models.CharField(
        _('location number'),
        max_length=20,
        validators=[MinLengthValidator(1)]
    )

    neighborhood = models.CharField(
        _('neighborhood'),
        max_length=100,
        validators=[MinLengthValidator(2)]
    )

    city = models.CharField(_('city'), max_length=100, validators=[MinLengthValidator(2)])

    state = models.CharField(_('state'), max_length=2, validators=[validate_state_code])

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_OPEN,
        help_text=_('Current lifecycle status of the donation')
    )

    donor = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='donations',
        help_text=_('User offering the item')
    )

    receiver = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='receiving_donations',
        help_text=_('User chosen to receive the item')
    )

    recipient = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='received_donations',
        help_text=_('User that received the item once the donation completed')
    )

    return_reason = models.TextField(
        _('return reason'),
        max_length=500,
        null=True,
        blank=True,
        help_text=_('Reason given by the receiver for returning the item')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('donation')
        verbose_name_plural = _('donations')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='donation_status_idx'),
            models.Index(fields=['category'], name='donation_category_idx'),
            models.Index(fields=['city', 'state'], name='donation_location_idx'),
            models.Index(fields=['-created_at'], name='donation_created_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(receiver__isnull=True) | ~Q(receiver=F('donor')),
                name='donation_donor_not_receiver'
            ),
            models.CheckConstraint(
                condition=(
                    Q(status__in=['IN_PROGRESS', 'PICKED_UP'], receiver__isnull=False)
                    | Q(status__in=['OPEN', 'COMPLETED'], receiver__isnull=True)
                ),
                name='donation_receiver_matches_status'
            ),
            models.CheckConstraint(
                condition=Q(return_reason__isnull=True) | Q(status='PICKED_UP'),
                name='donation_return_reason_when_picked_up'
            ),
        ]

    def __str__(self):
        """Return meaningful string representation."""
        return f"#{self.sequential_id} {self.title} ({self.status})"

    @property
    def has_receiver(self):
        return self.receiver_id is not None

    def is_party(self, user_id):
        """
        Check whether a user takes part in this donation.

        Parties are the donor, the current receiver and, after completion,
        the recipient. Contact details and progress are only disclosed to
        parties once a receiver has been chosen.

        Args:
            user_id: ID of the user to check (None for anonymous)

        Returns:
            bool: True if the user is a party to the donation
        """
        if user_id is None:
            return False
        return user_id in (self.donor_id, self.receiver_id, self.recipient_id)

    def role_of(self, user_id):
        """Return 'donor', 'receiver' or None for the given user."""
        if user_id is None:
            return None
        if user_id == self.donor_id:
            return 'donor'
        if self.receiver_id is not None and user_id == self.receiver_id:
            return 'receiver'
        return None

    def clean(self):
        """
        Validate field normalization and lifecycle invariants.

        Ensures:
        - State is upper-case and text fields are trimmed
        - A receiver is attached exactly while IN_PROGRESS or PICKED_UP
        - The donor never receives their own donation
        - A return reason only exists while PICKED_UP

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.state:
            self.state = self.state.strip().upper()

        if self.status in self.RECEIVER_STATUSES and self.receiver_id is None:
            raise ValidationError({
                'receiver': _('A donation in progress must have a receiver.')
            })

        if self.status not in self.RECEIVER_STATUSES and self.receiver_id is not None:
            raise ValidationError({
                'receiver': _('Only donations in progress can have a receiver.')
            })

        if self.receiver_id is not None and self.receiver_id == self.donor_id:
            raise ValidationError({
                'receiver': _('The donor cannot receive their own donation.')
            })

        if self.return_reason and self.status != self.STATUS_PICKED_UP:
            raise ValidationError({
                'return_reason': _('A return reason can only be set on a picked up donation.')
            })

    def save(self, *args, **kwargs):
        """
        Override save to ensure validation.

        Args:
            *args: Positional arguments
            **kwargs: Keyword arguments
        """
        self.full_clean()
        super().save(*args, **kwargs)


# ============================================================================
# Candidacy
# ============================================================================

class Candidacy(models.Model):
    """
    A user's registered interest in receiving an OPEN donation.

    At most one candidacy exists per (donation, applicant). Candidacies are
    listed first-come first-served.
    """

    donation = models.ForeignKey(
        Donation,
        on_delete=models.CASCADE,
        related_name='candidacies'
    )

    applicant = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='candidacies'
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('candidacy')
        verbose_name_plural = _('candidacies')
        ordering = ['created_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['donation', 'applicant'],
                name='unique_candidacy_per_applicant'
            )
        ]

    def __str__(self):
        return f"Candidacy of {self.applicant_id} for donation {self.donation_id}"


# ============================================================================
# Donation Progress
# ============================================================================

class DonationProgress(models.Model):
    """
    Bilateral confirmation ledger of a donation with a receiver.

    Each flag belongs to exactly one party (the ``_by_donor`` or
    ``_by_receiver`` half). Flags are written with field-level updates so
    that concurrent confirmations of both parties never overwrite each other.
    """

    FLAG_FIELDS = [
        'pickup_confirmed_by_donor',
        'pickup_confirmed_by_receiver',
        'completion_confirmed_by_donor',
        'completion_confirmed_by_receiver',
        'return_signaled_by_receiver',
        'return_confirmed_by_donor',
        'return_confirmed_by_receiver',
    ]

    donation = models.OneToOneField(
        Donation,
        on_delete=models.CASCADE,
        related_name='progress'
    )

    pickup_confirmed_by_donor = models.BooleanField(default=False)
    pickup_confirmed_by_receiver = models.BooleanField(default=False)
    completion_confirmed_by_donor = models.BooleanField(default=False)
    completion_confirmed_by_receiver = models.BooleanField(default=False)
    return_signaled_by_receiver = models.BooleanField(default=False)
    return_confirmed_by_donor = models.BooleanField(default=False)
    return_confirmed_by_receiver = models.BooleanField(default=False)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('donation progress')
        verbose_name_plural = _('donation progress records')

    def __str__(self):
        return f"Progress of donation {self.donation_id}"

    @property
    def pickup_confirmed(self):
        return self.pickup_confirmed_by_donor and self.pickup_confirmed_by_receiver

    @property
    def completion_confirmed(self):
        return self.completion_confirmed_by_donor and self.completion_confirmed_by_receiver

    @property
    def return_in_progress(self):
        return self.return_signaled_by_receiver and not self.return_completed

    @property
    def return_completed(self):
        return (
            self.return_signaled_by_receiver
            and self.return_confirmed_by_donor
            and self.return_confirmed_by_receiver
        )

    def flags(self):
        """Return the seven flags as a dict."""
        return {field: getattr(self, field) for field in self.FLAG_FIELDS}


# ============================================================================
# Edit History
# ============================================================================

class EditHistoryEntry(models.Model):
    """
    Immutable audit record of one mutation.

    ``changes`` maps each changed field to ``{"old_value": ..., "new_value": ...}``.
    """

    changes = models.JSONField(_('changes'), encoder=DjangoJSONEncoder)

    edited_at = models.DateTimeField(_('edited at'), auto_now_add=True)

    class Meta:
        abstract = True
        ordering = ['-edited_at', '-id']

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValidationError(_('Edit history entries cannot be modified.'))
        super().save(*args, **kwargs)


class DonationEditHistory(EditHistoryEntry):
    """Publicly readable history of a donation."""

    donation = models.ForeignKey(
        Donation,
        on_delete=models.CASCADE,
        related_name='edit_history'
    )

    edited_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='donation_edits'
    )

    class Meta(EditHistoryEntry.Meta):
        verbose_name = _('donation edit history entry')
        verbose_name_plural = _('donation edit history')

    def __str__(self):
        return f"Edit of donation {self.donation_id} at {self.edited_at}"


class ProfileEditHistory(EditHistoryEntry):
    """History of a user's profile, visible to its owner only."""

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='profile_history'
    )

    class Meta(EditHistoryEntry.Meta):
        verbose_name = _('profile edit history entry')
        verbose_name_plural = _('profile edit history')

    def __str__(self):
        return f"Edit of profile {self.user_id} at {self.edited_at}"
