"""
API views for the donation exchange.

Views translate HTTP requests into calls on ``core.services`` and render the
results. Service failures (DonationError) are logged here together with the
acting user and client IP, then rendered by ``core.exceptions``.
"""

import logging

from django.conf import settings
from django.contrib.auth import authenticate
from django.core.paginator import EmptyPage, Paginator
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken

from core.exceptions import DonationError, NotFound, ValidationFailed
from core.serializers import (
    CandidacySerializer,
    ChooseReceiverSerializer,
    DonationDetailSerializer,
    DonationEditHistorySerializer,
    DonationListSerializer,
    DonationWriteSerializer,
    LoginSerializer,
    MyCandidacySerializer,
    ProfileEditHistorySerializer,
    ProgressUpdateSerializer,
    PublicProfileSerializer,
    SignalReturnSerializer,
    UserProfileSerializer,
    UserProfileUpdateSerializer,
)
from core.services import candidacy, lifecycle, profiles

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """
    Get client IP address from request.
    Handles proxy headers for accurate IP detection.
    """
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def _positive_int(request, name, default):
    raw = request.query_params.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationFailed(
            f'Invalid value for "{name}".',
            errors={name: ['Must be a positive integer.']}
        )
    if value < 1:
        raise ValidationFailed(
            f'Invalid value for "{name}".',
            errors={name: ['Must be a positive integer.']}
        )
    return value


def paginate(request, queryset, serializer_class, context=None):
    """
    Paginate a queryset with ``page`` and ``limit`` query parameters.

    Returns:
        dict: count, total_pages, next, previous, results

    Raises:
        ValidationFailed: Non-integer page/limit or limit above the maximum
        NotFound: Page beyond the last one
    """
    page_number = _positive_int(request, 'page', 1)
    limit = _positive_int(request, 'limit', settings.DONATION_PAGE_SIZE)
    if limit > settings.DONATION_MAX_PAGE_SIZE:
        raise ValidationFailed(
            'Invalid value for "limit".',
            errors={'limit': [f'Must not exceed {settings.DONATION_MAX_PAGE_SIZE}.']}
        )

    paginator = Paginator(queryset, limit)
    try:
        page_obj = paginator.page(page_number)
    except EmptyPage:
        raise NotFound(f'Invalid page number. Page {page_number} does not exist.')

    context = dict(context or {}, request=request)
    serializer = serializer_class(page_obj.object_list, many=True, context=context)

    def page_url(number):
        query = request.query_params.copy()
        query['page'] = number
        query['limit'] = limit
        return request.build_absolute_uri(f"{request.path}?{query.urlencode()}")

    return {
        'count': paginator.count,
        'total_pages': paginator.num_pages if paginator.count else 0,
        'next': page_url(page_obj.next_page_number()) if page_obj.has_next() else None,
        'previous': page_url(page_obj.previous_page_number()) if page_obj.has_previous() else None,
        'results': serializer.data,
    }


class DonationAPIView(APIView):
    """
    Base view: authenticated by default, logs refused requests.

    ``public_methods`` lists HTTP methods that anonymous users may call.
    """

    permission_classes = [IsAuthenticated]
    public_methods = ()

    def get_permissions(self):
        if self.request.method in self.public_methods:
            return [AllowAny()]
        return super().get_permissions()

    def viewer_id(self, request):
        if request.user and request.user.is_authenticated:
            return request.user.id
        return None

    def validated(self, serializer):
        if not serializer.is_valid():
            raise ValidationFailed('Validation failed.', errors=serializer.errors)
        return serializer.validated_data

    def detail_response(self, request, donation, status_code=status.HTTP_200_OK):
        serializer = DonationDetailSerializer(
            lifecycle.get_donation(donation.pk),
            context={'request': request, 'viewer_id': self.viewer_id(request)}
        )
        return Response(serializer.data, status=status_code)

    def handle_exception(self, exc):
        if isinstance(exc, DonationError):
            logger.warning(
                f"{self.__class__.__name__} refused. "
                f"Reason: {exc.message}, Status: {exc.status_code}, "
                f"Object: {self.kwargs.get('pk')}, "
                f"User: {self.viewer_id(self.request)}, "
                f"IP: {get_client_ip(self.request)}"
            )
        return super().handle_exception(exc)


# ============================================================================
# Authentication and profiles
# ============================================================================

class LoginView(APIView):
    """
    API endpoint for user login with JWT token generation.

    Security features:
    - Rate limiting (scope 'login')
    - Generic error messages to prevent user enumeration
    - Failed login attempt logging for security monitoring
    - Case-insensitive email lookup

    POST /api/auth/login/
    Request body: {"email": "user@example.com", "password": "password123"}

    Success response (200): {"access": ..., "refresh": ..., "user": {...}}
    Error response (401): {"detail": "Invalid credentials"}
    """
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'login'

    def post(self, request, *args, **kwargs):
        serializer = LoginSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        email = serializer.validated_data['email'].lower().strip()
        password = serializer.validated_data['password']
        client_ip = get_client_ip(request)

        user = authenticate(request, email=email, password=password)
        if user is None:
            logger.warning(f"Failed login attempt. Email: {email}, IP: {client_ip}")
            return Response(
                {'detail': 'Invalid credentials'},
                status=status.HTTP_401_UNAUTHORIZED
            )

        refresh = RefreshToken.for_user(user)
        logger.info(f"Successful login. Email: {email}, IP: {client_ip}")

        return Response({
            'access': str(refresh.access_token),
            'refresh': str(refresh),
            'user': {
                'id': user.id,
                'email': user.email,
                'name': user.name,
            }
        }, status=status.HTTP_200_OK)


class UserProfileView(DonationAPIView):
    """
    GET /api/auth/profile/   - the authenticated user's profile
    PATCH /api/auth/profile/ - partial update, recorded in the profile history
    """

    def get(self, request, *args, **kwargs):
        serializer = UserProfileSerializer(request.user, context={'request': request})
        return Response(serializer.data, status=status.HTTP_200_OK)

    def patch(self, request, *args, **kwargs):
        data = self.validated(
            UserProfileUpdateSerializer(request.user, data=request.data, partial=True)
        )
        data = dict(data)
        profile_image = data.pop('profile_image', None)

        user = profiles.update_profile(request.user.id, data, profile_image=profile_image)

        serializer = UserProfileSerializer(user, context={'request': request})
        return Response(serializer.data, status=status.HTTP_200_OK)


class ProfileHistoryView(DonationAPIView):
    """GET /api/auth/profile/history/ - the owner's profile edit history."""

    def get(self, request, *args, **kwargs):
        entries = profiles.list_profile_history(request.user.id, request.user.id)
        return Response(paginate(request, entries, ProfileEditHistorySerializer))


class PublicProfileView(DonationAPIView):
    """GET /api/users/<id>/ - public profile and donation statistics."""

    public_methods = ('GET',)

    def get(self, request, *args, **kwargs):
        user = profiles.get_public_profile(kwargs['pk'])
        serializer = PublicProfileSerializer(user, context={'request': request})
        return Response(serializer.data, status=status.HTTP_200_OK)


# ============================================================================
# Donations
# ============================================================================

class DonationListCreateView(DonationAPIView):
    """
    GET /api/donations/  - public listing, newest first
        Query parameters: status, category, city (partial, case-insensitive),
        state (exact), page, limit (default 10, max 100)
    POST /api/donations/ - create a donation owned by the caller (201)
    """

    public_methods = ('GET',)

    def get(self, request, *args, **kwargs):
        params = request.query_params
        queryset = lifecycle.filter_donations(
            status=params.get('status'),
            category=params.get('category'),
            city=params.get('city'),
            state=params.get('state'),
        )
        data = paginate(request, queryset, DonationListSerializer)
        logger.info(
            f"Donation listing retrieved: {len(data['results'])} donations, "
            f"IP: {get_client_ip(request)}"
        )
        return Response(data, status=status.HTTP_200_OK)

    def post(self, request, *args, **kwargs):
        data = self.validated(DonationWriteSerializer(data=request.data))
        donation = lifecycle.create_donation(request.user.id, dict(data))
        logger.info(
            f"Donation created via API. Donation ID: {donation.pk}, "
            f"User: {request.user.email} (ID: {request.user.id}), "
            f"IP: {get_client_ip(request)}"
        )
        return self.detail_response(request, donation, status.HTTP_201_CREATED)


class DonationDetailView(DonationAPIView):
    """
    GET /api/donations/<id>/    - full record (contact details redacted for
                                  non-parties once a receiver exists)
    PATCH /api/donations/<id>/  - donor only, OPEN only
    DELETE /api/donations/<id>/ - donor only, OPEN only (204)
    """

    public_methods = ('GET',)

    def get(self, request, *args, **kwargs):
        donation = lifecycle.get_donation(kwargs['pk'])
        serializer = DonationDetailSerializer(
            donation,
            context={'request': request, 'viewer_id': self.viewer_id(request)}
        )
        return Response(serializer.data, status=status.HTTP_200_OK)

    def patch(self, request, *args, **kwargs):
        data = self.validated(DonationWriteSerializer(data=request.data, partial=True))
        donation = lifecycle.update_donation(kwargs['pk'], request.user.id, dict(data))
        return self.detail_response(request, donation)

    def delete(self, request, *args, **kwargs):
        lifecycle.delete_donation(kwargs['pk'], request.user.id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class DonationHistoryView(DonationAPIView):
    """GET /api/donations/<id>/history/ - public edit history, newest first."""

    public_methods = ('GET',)

    def get(self, request, *args, **kwargs):
        entries = lifecycle.get_history(kwargs['pk'])
        return Response(paginate(request, entries, DonationEditHistorySerializer))


class MyDonationsView(DonationAPIView):
    """GET /api/donations/mine/ - donations created by the caller."""

    def get(self, request, *args, **kwargs):
        queryset = lifecycle.list_donations_by_donor(request.user.id)
        return Response(paginate(request, queryset, DonationListSerializer))


class ReceivedDonationsView(DonationAPIView):
    """GET /api/donations/received/ - donations the caller receives or received."""

    def get(self, request, *args, **kwargs):
        queryset = lifecycle.list_received_donations(request.user.id)
        return Response(paginate(request, queryset, DonationListSerializer))


# ============================================================================
# Candidacies and receiver selection
# ============================================================================

class DonationApplyView(DonationAPIView):
    """POST /api/donations/<id>/apply/ - register interest (201)."""

    def post(self, request, *args, **kwargs):
        created = lifecycle.apply_for_donation(kwargs['pk'], request.user.id)
        return Response(
            CandidacySerializer(created, context={'request': request}).data,
            status=status.HTTP_201_CREATED
        )


class DonationCandidacyView(DonationAPIView):
    """DELETE /api/donations/<id>/candidacy/ - withdraw the caller's candidacy (204)."""

    def delete(self, request, *args, **kwargs):
        lifecycle.withdraw_candidacy(kwargs['pk'], request.user.id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class DonationCandidatesView(DonationAPIView):
    """GET /api/donations/<id>/candidates/ - donor only, first-come first."""

    def get(self, request, *args, **kwargs):
        candidacies = lifecycle.list_candidates(kwargs['pk'], request.user.id)
        serializer = CandidacySerializer(candidacies, many=True, context={'request': request})
        return Response(serializer.data, status=status.HTTP_200_OK)


class MyCandidaciesView(DonationAPIView):
    """GET /api/candidacies/mine/ - the caller's candidacies, newest first."""

    def get(self, request, *args, **kwargs):
        queryset = candidacy.list_for_user(request.user.id)
        return Response(paginate(request, queryset, MyCandidacySerializer))


class ChooseReceiverView(DonationAPIView):
    """POST /api/donations/<id>/choose-receiver/ - body: {"receiver_id": <user id>}."""

    def post(self, request, *args, **kwargs):
        data = self.validated(ChooseReceiverSerializer(data=request.data))
        donation = lifecycle.choose_receiver(kwargs['pk'], request.user.id, data['receiver_id'])
        return self.detail_response(request, donation)


class CancelReceivingView(DonationAPIView):
    """POST /api/donations/<id>/cancel-receiving/ - receiver gives up before pickup."""

    def post(self, request, *args, **kwargs):
        donation = lifecycle.cancel_receiving(kwargs['pk'], request.user.id)
        return self.detail_response(request, donation)


# ============================================================================
# Progress and returns
# ============================================================================

class DonationProgressView(DonationAPIView):
    """
    GET /api/donations/<id>/progress/   - parties only
    PATCH /api/donations/<id>/progress/ - body: subset of the seven flags;
                                          each party may only set its own half
    """

    def get(self, request, *args, **kwargs):
        summary = lifecycle.get_progress(kwargs['pk'], request.user.id)
        return Response(summary, status=status.HTTP_200_OK)

    def patch(self, request, *args, **kwargs):
        data = self.validated(ProgressUpdateSerializer(data=request.data))
        donation = lifecycle.update_progress(kwargs['pk'], request.user.id, dict(data))
        return self.detail_response(request, donation)


class SignalReturnView(DonationAPIView):
    """POST /api/donations/<id>/signal-return/ - body: {"reason": "..."} (10-500 chars)."""

    def post(self, request, *args, **kwargs):
        data = self.validated(SignalReturnSerializer(data=request.data))
        donation = lifecycle.signal_return(kwargs['pk'], request.user.id, data['reason'])
        return self.detail_response(request, donation)


class ConfirmReturnView(DonationAPIView):
    """POST /api/donations/<id>/confirm-return/ - donor or receiver."""

    def post(self, request, *args, **kwargs):
        donation = lifecycle.confirm_return(kwargs['pk'], request.user.id)
        return self.detail_response(request, donation)
