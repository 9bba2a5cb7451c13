import json

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer

from patientflow.exceptions import NotificationNotFound
from patientflow.services.notifications import NotificationDispatcher, serialize_notification, user_group


async def _ws_error(ws, code: int, message: str, *, close: bool = False):
    """Error frame sent to the client.  4xxx: client errors, 5xxx: server errors."""
    payload = {"type": "error", "code": code, "message": message}
    try:
        await ws.send(json.dumps(payload))
    finally:
        if close:
            await ws.close(code=code)


class NotificationConsumer(AsyncWebsocketConsumer):
    """Per-user notification stream.

    On connect the user joins ``user.<id>`` and receives every unread
    notification.  Clients acknowledge with ``{"action": "read", "id": ...}``.
    """

    dispatcher = NotificationDispatcher()

    async def connect(self):
        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            await self.close(code=4003)
            return
        self.user = user
        self.group_name = user_group(user.pk)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        for item in await self._unread():
            await self.send(json.dumps({"type": "notification", "notification": item}))

    async def disconnect(self, close_code):
        if hasattr(self, "group_name"):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        if not text_data:
            return
        try:
            data = json.loads(text_data)
        except ValueError:
            await _ws_error(self, 4000, "invalid_json")
            return
        if not isinstance(data, dict) or data.get("action") != "read" or not data.get("id"):
            await _ws_error(self, 4001, "unsupported_action")
            return
        try:
            n = await self._mark_read(data["id"])
        except NotificationNotFound:
            await _ws_error(self, 4004, "notification_not_found")
            return
        await self.send(json.dumps({"type": "ack", "id": str(n.id), "isRead": n.is_read}))

    # group_send handler: {"type": "notification.message", "notification": {...}}
    async def notification_message(self, event):
        await self.send(json.dumps({"type": "notification", "notification": event["notification"]}))

    @database_sync_to_async
    def _unread(self):
        return [serialize_notification(n) for n in self.dispatcher.unread_for(self.user)]

    @database_sync_to_async
    def _mark_read(self, notification_id):
        return self.dispatcher.mark_read(notification_id, self.user)
