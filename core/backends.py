"""
Authentication backend that identifies users by email address.
"""

import logging

from django.contrib.auth import get_user_model
from django.contrib.auth.backends import ModelBackend

User = get_user_model()
logger = logging.getLogger(__name__)


class EmailBackend(ModelBackend):
    """
    Log users in with their email address instead of the username.

    The lookup is case-insensitive. Inactive users are refused the same way
    as wrong passwords.
    """

    def authenticate(self, request, username=None, password=None, **kwargs):
        email = kwargs.get('email', username)
        if not email or password is None:
            return None

        user = User.objects.filter(email__iexact=email.strip()).first()
        if user is None:
            # Hash once anyway so unknown emails take as long as wrong passwords
            User().set_password(password)
            logger.debug(f"Email authentication failed: unknown email {email}")
            return None

        if user.check_password(password) and self.user_can_authenticate(user):
            return user

        return None
