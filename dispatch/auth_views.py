"""
Authentication views.

Login issues a simplejwt access token and stores it in an httpOnly cookie
(see :mod:`dispatch.authentication`); logout deletes the cookie.  These
live outside ``dispatch.views`` so that the authentication class can be
imported by DRF without pulling in the view modules.
"""
from __future__ import annotations

from django.conf import settings
from django.contrib.auth import authenticate
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.tokens import AccessToken

from dispatch.serializers.auth import LoginSerializer, user_data
from dispatch.services.audit import client_ip, log_action

from .models import User


def _authenticate(request, identifier: str, password: str) -> User | None:
    user = authenticate(request, username=identifier, password=password)
    if user is None and '@' in identifier:
        match = User.objects.filter(email__iexact=identifier).first()
        if match is not None:
            user = authenticate(request, username=match.username, password=password)
    return user


def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        settings.AUTH_COOKIE_NAME,
        token,
        max_age=settings.AUTH_TOKEN_HOURS * 3600,
        httponly=True,
        secure=settings.AUTH_COOKIE_SECURE,
        samesite='Lax',
    )


# ---------------------------------------------------------------------
# Username/email + password login
# ---------------------------------------------------------------------
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def login_view(request):
    """
    Accepts ``username`` (or an email address) and ``password``.
    On success the token is set as a cookie; the body carries the user only.
    """
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    identifier = s.validated_data['username']
    user = _authenticate(request, identifier, s.validated_data['password'])
    if user is None:
        # audit failed attempts with the identifier only
        log_action(user=None, action='login', object_type='user',
                   detail={'result': 'fail', 'username': identifier, 'ip': client_ip(request)})
        return Response({'ok': False, 'error': {'code': 'invalid_credentials',
                                                 'message': 'Invalid username or password'}}, status=401)

    log_action(user=user, action='login', object_type='user', object_id=user.id,
               detail={'result': 'ok', 'ip': client_ip(request)})
    token = AccessToken.for_user(user)
    response = Response({'ok': True, 'user': user_data(user)})
    _set_auth_cookie(response, str(token))
    return response

# ScopedRateThrottle reads throttle_scope from the view class
login_view.cls.throttle_scope = 'login'


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def logout_view(request):
    response = Response({'ok': True})
    response.delete_cookie(settings.AUTH_COOKIE_NAME, samesite='Lax')
    return response


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def me_view(request):
    return Response({'ok': True, 'user': user_data(request.user)})
