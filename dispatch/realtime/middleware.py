"""Populate ``scope['user']`` for websocket connections from the JWT cookie."""
from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from channels.sessions import CookieMiddleware
from django.conf import settings
from django.contrib.auth.models import AnonymousUser

from dispatch.authentication import user_for_raw_token


class _JWTCookieAuth(BaseMiddleware):

    async def __call__(self, scope, receive, send):
        scope = dict(scope)
        raw_token = scope.get('cookies', {}).get(settings.AUTH_COOKIE_NAME)
        user = None
        if raw_token:
            user = await database_sync_to_async(user_for_raw_token)(raw_token)
        scope['user'] = user or AnonymousUser()
        return await super().__call__(scope, receive, send)


def CookieJWTAuthMiddleware(inner):
    return CookieMiddleware(_JWTCookieAuth(inner))
