"""
Best-effort fan-out of dispatch events to connected websocket clients.

Events go to the ``dispatch`` channel-layer group (every client) or to a
scoped group such as ``dispatch.floor.FCC1``.  Delivery is fire-and-forget:
a missing channel layer is a no-op, and a full channel or a failing
backend is logged and never raised to the caller.

Services never talk to the channel layer directly; they call
:func:`publish` (or :func:`publish_on_commit` inside a transaction), which
forwards to the active publisher.  Tests swap in a recording publisher with
:func:`set_publisher`.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

from asgiref.sync import async_to_sync
from channels.exceptions import ChannelFull
from channels.layers import get_channel_layer
from django.db import transaction

logger = logging.getLogger(__name__)

BROADCAST_GROUP = 'dispatch'
HANDLER_TYPE = 'dispatch.event'


def group_for(scope: str | None) -> str:
    return BROADCAST_GROUP if not scope else f'{BROADCAST_GROUP}.{scope}'


class Publisher(Protocol):
    def publish(self, event: str, payload: dict[str, Any], scope: str | None = None) -> None: ...


class ChannelLayerPublisher:
    """Publishes through the default Channels layer."""

    def publish(self, event: str, payload: dict[str, Any], scope: str | None = None) -> None:
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return
        message = {'type': HANDLER_TYPE, 'event': event, 'payload': payload}
        try:
            async_to_sync(channel_layer.group_send)(group_for(scope), message)
        except ChannelFull:
            logger.warning('Channel full, dropped %s event for %s', event, group_for(scope))
        except Exception:
            # the write this event reports has already committed
            logger.exception('Could not publish %s event to %s', event, group_for(scope))


_publisher: Publisher = ChannelLayerPublisher()


def get_publisher() -> Publisher:
    return _publisher


def set_publisher(publisher: Publisher) -> Publisher:
    """Install ``publisher`` and return the previous one."""
    global _publisher
    previous, _publisher = _publisher, publisher
    return previous


def publish(event: str, payload: dict[str, Any], scope: str | None = None) -> None:
    _publisher.publish(event, payload, scope)


def publish_on_commit(event: str, payload: dict[str, Any], scope: str | None = None) -> None:
    """Publish once the surrounding transaction commits (immediately outside one)."""
    transaction.on_commit(lambda: publish(event, payload, scope))
