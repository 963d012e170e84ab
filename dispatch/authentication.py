"""
JWT authentication read from an httpOnly cookie.

The login view stores a simplejwt access token in the ``AUTH_COOKIE_NAME``
cookie.  Browser clients therefore never handle the token; scripts and tests
may still send it as ``Authorization: Bearer <token>``.
"""
from __future__ import annotations

from django.conf import settings
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError


class CookieJWTAuthentication(JWTAuthentication):
    """Authenticate from the token cookie, falling back to the header."""

    def authenticate(self, request):
        raw_token = request.COOKIES.get(settings.AUTH_COOKIE_NAME)
        if raw_token is None:
            return super().authenticate(request)
        try:
            validated = self.get_validated_token(raw_token)
        except (InvalidToken, TokenError) as exc:
            raise AuthenticationFailed('Invalid or expired token') from exc
        user = self.get_user(validated)
        if not user.is_active:
            raise AuthenticationFailed('User is inactive', code='user_inactive')
        return user, validated


def user_for_raw_token(raw_token: str):
    """Resolve a raw access token to an active user, or ``None``."""
    auth = CookieJWTAuthentication()
    try:
        validated = auth.get_validated_token(raw_token)
        user = auth.get_user(validated)
    except (InvalidToken, TokenError, AuthenticationFailed):
        return None
    return user if user.is_active else None
