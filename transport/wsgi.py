"""
WSGI config for the transport project.

It exposes the WSGI callable as a module-level variable named ``application``.
Realtime updates need the ASGI entrypoint (``transport.asgi``); this one only
serves the HTTP API.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'transport.settings')

application = get_wsgi_application()
