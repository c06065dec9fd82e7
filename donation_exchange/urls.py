"""
URL configuration for the donation exchange project.

All API endpoints live under /api/. Donation identifiers are UUIDs; user
identifiers are integers.
"""
from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import path
from rest_framework_simplejwt.views import (
    TokenBlacklistView,
    TokenRefreshView,
    TokenVerifyView,
)
from core.views import (
    CancelReceivingView,
    ChooseReceiverView,
    ConfirmReturnView,
    DonationApplyView,
    DonationCandidacyView,
    DonationCandidatesView,
    DonationDetailView,
    DonationHistoryView,
    DonationListCreateView,
    DonationProgressView,
    LoginView,
    MyCandidaciesView,
    MyDonationsView,
    ProfileHistoryView,
    PublicProfileView,
    ReceivedDonationsView,
    SignalReturnView,
    UserProfileView,
)


urlpatterns = [
    path('admin/', admin.site.urls),

    # Authentication endpoints
    path('api/auth/login/', LoginView.as_view(), name='user_login'),
    path('api/auth/logout/', TokenBlacklistView.as_view(), name='user_logout'),
    path('api/auth/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/auth/token/verify/', TokenVerifyView.as_view(), name='token_verify'),
    path('api/auth/profile/', UserProfileView.as_view(), name='user_profile'),
    path('api/auth/profile/history/', ProfileHistoryView.as_view(), name='profile_history'),

    # Users
    path('api/users/<int:pk>/', PublicProfileView.as_view(), name='public_profile'),

    # Donations
    path('api/donations/', DonationListCreateView.as_view(), name='donation_list'),
    path('api/donations/mine/', MyDonationsView.as_view(), name='my_donations'),
    path('api/donations/received/', ReceivedDonationsView.as_view(), name='received_donations'),
    path('api/donations/<uuid:pk>/', DonationDetailView.as_view(), name='donation_detail'),
    path('api/donations/<uuid:pk>/history/', DonationHistoryView.as_view(), name='donation_history'),

    # Candidacies
    path('api/donations/<uuid:pk>/apply/', DonationApplyView.as_view(), name='donation_apply'),
    path('api/donations/<uuid:pk>/candidacy/', DonationCandidacyView.as_view(), name='donation_candidacy'),
    path('api/donations/<uuid:pk>/candidates/', DonationCandidatesView.as_view(), name='donation_candidates'),
    path('api/candidacies/mine/', MyCandidaciesView.as_view(), name='my_candidacies'),

    # Receiver selection, progress and returns
    path('api/donations/<uuid:pk>/choose-receiver/', ChooseReceiverView.as_view(), name='donation_choose_receiver'),
    path('api/donations/<uuid:pk>/cancel-receiving/', CancelReceivingView.as_view(), name='donation_cancel_receiving'),
    path('api/donations/<uuid:pk>/progress/', DonationProgressView.as_view(), name='donation_progress'),
    path('api/donations/<uuid:pk>/signal-return/', SignalReturnView.as_view(), name='donation_signal_return'),
    path('api/donations/<uuid:pk>/confirm-return/', ConfirmReturnView.as_view(), name='donation_confirm_return'),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
