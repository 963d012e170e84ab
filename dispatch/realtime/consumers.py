import json
import re

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer

from dispatch.realtime.fanout import BROADCAST_GROUP, group_for
from dispatch.services.transporters import record_heartbeat

# Rooms a client may subscribe to in addition to the broadcast group.
ROOM_RE = re.compile(r'^(dispatch_board|transporters|floor\.FCC[1456])$')


class DispatchConsumer(AsyncWebsocketConsumer):
    """Pushes dispatch events to authenticated staff clients.

    Clients send only subscription messages
    (``{"action": "join_room"|"leave_room", "room": "floor.FCC1"}``) and an
    optional ``{"action": "heartbeat"}``; state changes go through the API.
    """

    async def connect(self):
        user = self.scope.get("user")
        if not user or not user.is_authenticated:
            await self.close(code=4401)
            return
        self.rooms = set()
        await self.channel_layer.group_add(BROADCAST_GROUP, self.channel_name)
        await self.accept()
        await database_sync_to_async(record_heartbeat)(user, channel_name=self.channel_name)
        await self.send(json.dumps({"type": "welcome", "payload": {"userId": user.id}}))

    async def disconnect(self, close_code):
        if not hasattr(self, "rooms"):
            return
        await self.channel_layer.group_discard(BROADCAST_GROUP, self.channel_name)
        for room in self.rooms:
            await self.channel_layer.group_discard(group_for(room), self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        if not text_data:
            return
        try:
            data = json.loads(text_data)
        except ValueError:
            await self._error("invalid_json")
            return
        if not isinstance(data, dict):
            await self._error("invalid_payload")
            return

        action = data.get("action")
        if action == "heartbeat":
            await database_sync_to_async(record_heartbeat)(self.scope["user"], channel_name=self.channel_name)
            return
        if action not in ("join_room", "leave_room"):
            await self._error("unsupported_action")
            return
        room = data.get("room")
        if not isinstance(room, str) or not ROOM_RE.match(room):
            await self._error("invalid_room")
            return
        if action == "join_room":
            self.rooms.add(room)
            await self.channel_layer.group_add(group_for(room), self.channel_name)
        else:
            self.rooms.discard(room)
            await self.channel_layer.group_discard(group_for(room), self.channel_name)
        await self.send(json.dumps({"type": "subscribed", "payload": {"rooms": sorted(self.rooms)}}))

    async def _error(self, message):
        await self.send(json.dumps({"type": "error", "payload": {"message": message}}))

    # group_send handler for {"type": "dispatch.event", "event": ..., "payload": ...}
    async def dispatch_event(self, event):
        await self.send(json.dumps({"type": event["event"], "payload": event.get("payload", {})}))
