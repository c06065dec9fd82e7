"""
Serializers for donations, candidacies, progress and user profiles.

Write serializers only validate the shape of a request; persisting the data
is left to the services in ``core.services`` so that every mutation goes
through the lifecycle rules and the edit history.
"""

import re

from django.contrib.auth import get_user_model
from rest_framework import serializers

from core.models import (
    Candidacy,
    Donation,
    DonationEditHistory,
    DonationProgress,
    ProfileEditHistory,
)
from core.services import profiles, progress as progress_service

User = get_user_model()


def _profile_image_url(serializer, user):
    if not user.profile_image:
        return None
    request = serializer.context.get('request')
    if request is not None:
        return request.build_absolute_uri(user.profile_image.url)
    return user.profile_image.url


def _clean_state(value):
    value = value.strip().upper()
    if not re.match(r'^[A-Z]{2}$', value):
        raise serializers.ValidationError('State must be exactly 2 letters (e.g. SP).')
    return value


# ============================================================================
# Authentication
# ============================================================================

class LoginSerializer(serializers.Serializer):
    """
    Serializer for user login with email and password.

    Minimal validation to prevent user enumeration attacks.
    Actual authentication happens in the view.
    """
    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )


# ============================================================================
# Users
# ============================================================================

class UserSummarySerializer(serializers.ModelSerializer):
    """Public, non-sensitive view of a user."""

    profile_image_url = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'name', 'city', 'state', 'profile_image_url']
        read_only_fields = fields

    def get_profile_image_url(self, obj):
        return _profile_image_url(self, obj)


class UserContactSerializer(UserSummarySerializer):
    """User summary plus contact details, shown to the parties of a donation."""

    class Meta(UserSummarySerializer.Meta):
        fields = UserSummarySerializer.Meta.fields + [
            'email',
            'phone_number',
            'contact_email',
            'contact_phone',
            'social_networks',
        ]
        read_only_fields = fields


class UserProfileSerializer(serializers.ModelSerializer):
    """
    The authenticated user's own profile.

    Excludes password, permissions and other account internals.
    """

    profile_image_url = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'email', 'username'] + User.PROFILE_FIELDS + [
            'profile_image_url',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_profile_image_url(self, obj):
        return _profile_image_url(self, obj)


class UserProfileUpdateSerializer(serializers.ModelSerializer):
    """
    Validates profile updates (PATCH).

    Only profile fields and the profile image can be changed; account fields
    such as email, password or permissions are dropped if sent.
    """

    state = serializers.CharField(required=False, allow_blank=True, max_length=2)

    class Meta:
        model = User
        fields = User.PROFILE_FIELDS + ['profile_image']
        extra_kwargs = {field: {'required': False} for field in User.PROFILE_FIELDS + ['profile_image']}

    def validate_name(self, value):
        value = value.strip()
        if value and len(value) < 2:
            raise serializers.ValidationError('Name must have at least 2 characters.')
        return value

    def validate_state(self, value):
        if not value:
            return value
        return _clean_state(value)

    def validate_social_networks(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError('Social networks must be an object.')
        return value

    def validate(self, attrs):
        restricted_fields = [
            'email', 'password', 'is_staff', 'is_superuser', 'is_active',
            'username', 'groups', 'user_permissions',
            'created_at', 'updated_at', 'last_login',
        ]
        for field in restricted_fields:
            attrs.pop(field, None)
        return attrs


class PublicProfileSerializer(serializers.ModelSerializer):
    """Public profile page of a user, with donation statistics."""

    profile_image_url = serializers.SerializerMethodField()
    stats = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id',
            'name',
            'city',
            'state',
            'biography',
            'profile_image_url',
            'created_at',
            'stats',
        ]
        read_only_fields = fields

    def get_profile_image_url(self, obj):
        return _profile_image_url(self, obj)

    def get_stats(self, obj):
        return profiles.get_user_stats(obj.pk)


class ProfileEditHistorySerializer(serializers.ModelSerializer):

    class Meta:
        model = ProfileEditHistory
        fields = ['id', 'changes', 'edited_at']
        read_only_fields = fields


# ============================================================================
# Donations
# ============================================================================

class DonationWriteSerializer(serializers.ModelSerializer):
    """
    Validates the donation fields on create (POST) and edit (PATCH).

    Rules:
    - title: 5-100 characters
    - description: 10-1000 characters
    - postal_code: 12345-678 or 12345678
    - street 3-200, location_number 1-20, neighborhood and city 2-100
    - state: 2 letters, upper-cased
    """

    state = serializers.CharField(max_length=2)

    class Meta:
        model = Donation
        fields = Donation.EDITABLE_FIELDS

    def _stripped(self, value, field_label):
        value = value.strip()
        if not value:
            raise serializers.ValidationError(f'{field_label} cannot be empty or whitespace only.')
        return value

    def validate_title(self, value):
        value = self._stripped(value, 'Title')
        if len(value) < 5:
            raise serializers.ValidationError('Title must have at least 5 characters.')
        return value

    def validate_description(self, value):
        value = self._stripped(value, 'Description')
        if len(value) < 10:
            raise serializers.ValidationError('Description must have at least 10 characters.')
        return value

    def validate_street(self, value):
        return self._stripped(value, 'Street')

    def validate_location_number(self, value):
        return self._stripped(value, 'Location number')

    def validate_neighborhood(self, value):
        return self._stripped(value, 'Neighborhood')

    def validate_city(self, value):
        return self._stripped(value, 'City')

    def validate_state(self, value):
        return _clean_state(value)

    def validate(self, attrs):
        unknown = sorted(set(self.initial_data) - set(self.fields))
        if unknown:
            raise serializers.ValidationError(
                {field: ['This field cannot be set.'] for field in unknown}
            )
        if self.partial and not attrs:
            raise serializers.ValidationError('At least one field must be provided for update.')
        return attrs


class DonationListSerializer(serializers.ModelSerializer):
    """Compact donation representation for listings."""

    donor = UserSummarySerializer(read_only=True)

    class Meta:
        model = Donation
        fields = [
            'id',
            'sequential_id',
            'title',
            'category',
            'pickup_type',
            'neighborhood',
            'city',
            'state',
            'status',
            'donor',
            'created_at',
        ]
        read_only_fields = fields


class DonationDetailSerializer(serializers.ModelSerializer):
    """
    Full donation record.

    Once a receiver has been chosen, contact details, the street address and
    the progress are only shown to the parties of the donation. The viewing
    user's ID is read from ``context['viewer_id']``.
    """

    PRIVATE_FIELDS = ['street', 'location_number', 'return_reason', 'progress']

    donor = serializers.SerializerMethodField()
    receiver = serializers.SerializerMethodField()
    recipient = serializers.SerializerMethodField()
    candidacy_count = serializers.SerializerMethodField()
    progress = serializers.SerializerMethodField()
    is_party = serializers.SerializerMethodField()

    class Meta:
        model = Donation
        fields = [
            'id',
            'sequential_id',
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
            'status',
            'donor',
            'receiver',
            'recipient',
            'return_reason',
            'candidacy_count',
            'progress',
            'is_party',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def _viewer_id(self):
        return self.context.get('viewer_id')

    def _disclosed(self, obj):
        """Whether contact details may be shown to the viewer."""
        if obj.receiver_id is None and obj.recipient_id is None:
            return True
        return obj.is_party(self._viewer_id())

    def _user(self, obj, user):
        if user is None:
            return None
        serializer_class = UserContactSerializer if self._disclosed(obj) else UserSummarySerializer
        return serializer_class(user, context=self.context).data

    def get_donor(self, obj):
        return self._user(obj, obj.donor)

    def get_receiver(self, obj):
        return self._user(obj, obj.receiver)

    def get_recipient(self, obj):
        return self._user(obj, obj.recipient)

    def get_candidacy_count(self, obj):
        count = getattr(obj, 'candidacy_count', None)
        if count is None:
            count = obj.candidacies.count()
        return count

    def get_progress(self, obj):
        if obj.receiver_id is None:
            return None
        return progress_service.summarize(obj.pk)

    def get_is_party(self, obj):
        return obj.is_party(self._viewer_id())

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if not self._disclosed(instance):
            for field in self.PRIVATE_FIELDS:
                data[field] = None
        return data


class DonationEditHistorySerializer(serializers.ModelSerializer):

    edited_by = serializers.PrimaryKeyRelatedField(read_only=True)

    class Meta:
        model = DonationEditHistory
        fields = ['id', 'changes', 'edited_by', 'edited_at']
        read_only_fields = fields


# ============================================================================
# Candidacies
# ============================================================================

class CandidacySerializer(serializers.ModelSerializer):
    """A candidacy as seen by the donor."""

    applicant = UserSummarySerializer(read_only=True)

    class Meta:
        model = Candidacy
        fields = ['id', 'applicant', 'created_at']
        read_only_fields = fields


class MyCandidacySerializer(serializers.ModelSerializer):
    """A candidacy as seen by the applicant."""

    donation = DonationListSerializer(read_only=True)

    class Meta:
        model = Candidacy
        fields = ['id', 'donation', 'created_at']
        read_only_fields = fields


class ChooseReceiverSerializer(serializers.Serializer):
    receiver_id = serializers.IntegerField(min_value=1)


# ============================================================================
# Progress and returns
# ============================================================================

class ProgressUpdateSerializer(serializers.Serializer):
    """
    Subset of the seven progress flags.

    Unknown keys are rejected so a typo never silently does nothing.
    """

    pickup_confirmed_by_donor = serializers.BooleanField(required=False)
    pickup_confirmed_by_receiver = serializers.BooleanField(required=False)
    completion_confirmed_by_donor = serializers.BooleanField(required=False)
    completion_confirmed_by_receiver = serializers.BooleanField(required=False)
    return_signaled_by_receiver = serializers.BooleanField(required=False)
    return_confirmed_by_donor = serializers.BooleanField(required=False)
    return_confirmed_by_receiver = serializers.BooleanField(required=False)

    def validate(self, attrs):
        unknown = sorted(set(self.initial_data) - set(DonationProgress.FLAG_FIELDS))
        if unknown:
            raise serializers.ValidationError(
                {field: ['Unknown progress flag.'] for field in unknown}
            )
        if not attrs:
            raise serializers.ValidationError('At least one progress flag must be provided.')
        return attrs


class SignalReturnSerializer(serializers.Serializer):
    reason = serializers.CharField(min_length=10, max_length=500, trim_whitespace=True)
