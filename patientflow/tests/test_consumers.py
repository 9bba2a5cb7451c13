import pytest
from channels.db import database_sync_to_async
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser

from patientflow.enums import NotificationType, Role
from patientflow.models import Notification, User
from patientflow.payloads import DepartmentAlertPayload
from patientflow.realtime.consumers import NotificationConsumer
from patientflow.services.notifications import NotificationDispatcher

pytestmark = [pytest.mark.asyncio, pytest.mark.django_db(transaction=True)]


@database_sync_to_async
def _user(username):
    return User.objects.create_user(username=username, password='P@ssw0rd1', role=Role.NURSE)


@database_sync_to_async
def _notify(user, message='Bed 4 is ready'):
    return NotificationDispatcher().notify(
        [user], message=message, type=NotificationType.DEPARTMENT_ALERT,
        payload=DepartmentAlertPayload(patient_id='p1', department='TRIAGE', event='registered'),
    )


@database_sync_to_async
def _is_read(notification_id):
    return Notification.objects.get(pk=notification_id).is_read


async def _connect(user):
    communicator = WebsocketCommunicator(NotificationConsumer.as_asgi(), "/ws/notifications/")
    communicator.scope["user"] = user
    connected, _ = await communicator.connect()
    return communicator, connected


async def test_anonymous_connection_is_refused():
    communicator, connected = await _connect(AnonymousUser())
    assert not connected


async def test_unread_notifications_are_replayed_and_acknowledged():
    user = await _user('ws_nurse')
    handle = await _notify(user)
    nid = handle.notification_ids[0]

    communicator, connected = await _connect(user)
    assert connected
    message = await communicator.receive_json_from()
    assert message["type"] == "notification"
    assert message["notification"]["id"] == nid
    assert message["notification"]["message"] == 'Bed 4 is ready'

    await communicator.send_json_to({"action": "read", "id": nid})
    ack = await communicator.receive_json_from()
    assert ack == {"type": "ack", "id": nid, "isRead": True}
    assert await _is_read(nid)
    await communicator.disconnect()


async def test_live_push_reaches_connected_user():
    user = await _user('ws_doctor')
    communicator, connected = await _connect(user)
    assert connected
    assert await communicator.receive_nothing()

    handle = await _notify(user, 'Patient arriving')
    message = await communicator.receive_json_from()
    assert message["notification"]["id"] == handle.notification_ids[0]
    assert handle.delivered == 1
    await communicator.disconnect()


async def test_bad_frames_get_error_replies():
    user = await _user('ws_clerk')
    communicator, _ = await _connect(user)

    await communicator.send_to(text_data="{not json")
    assert (await communicator.receive_json_from())["code"] == 4000
    await communicator.send_json_to({"action": "delete", "id": "x"})
    assert (await communicator.receive_json_from())["code"] == 4001
    await communicator.send_json_to({"action": "read", "id": "00000000-0000-0000-0000-000000000000"})
    assert (await communicator.receive_json_from())["code"] == 4004
    await communicator.disconnect()
