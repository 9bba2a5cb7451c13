"""
Notification dispatcher.

Notifications are persisted first and then pushed to the recipient's
channel group (``user.<id>``).  A row whose push succeeded carries a
``delivered_at`` stamp; rows left undelivered are picked up again by
``manage.py retry_notifications``.  Dispatch problems are logged and
reported on the returned :class:`DeliveryHandle`, never raised, so a
flow operation that already committed is not undone by a dead socket.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, List, Optional

import bleach
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from patientflow import conf
from patientflow.enums import NotificationType, Role
from patientflow.exceptions import DownstreamUnavailable, NotificationNotFound
from patientflow.models import Notification
from patientflow.payloads import CriticalResultPayload, check_payload
from patientflow.services.directory import UserDirectory

logger = logging.getLogger(__name__)

User = get_user_model()


def user_group(user_id) -> str:
    return f"user.{user_id}"


def serialize_notification(n: Notification) -> dict:
    return {
        'id': str(n.id),
        'type': n.type,
        'message': n.message,
        'payload': n.payload,
        'senderId': n.sender_id,
        'isRead': n.is_read,
        'createdAt': n.created_at.isoformat(),
    }


@dataclass
class DeliveryHandle:
    notification_ids: List[str] = field(default_factory=list)
    delivered: int = 0
    failed: bool = False

    def merge(self, other: 'DeliveryHandle') -> 'DeliveryHandle':
        self.notification_ids.extend(other.notification_ids)
        self.delivered += other.delivered
        self.failed = self.failed or other.failed
        return self


def _recipient_id(r):
    return getattr(r, 'pk', r)


class NotificationDispatcher:

    def __init__(self, directory: Optional[UserDirectory] = None, channel_layer=None):
        self.directory = directory or UserDirectory()
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        return self._channel_layer if self._channel_layer is not None else get_channel_layer()

    def notify(self, recipients, *, sender=None, message: str, type: str, payload) -> DeliveryHandle:
        """Persist one notification per distinct recipient and push each one.

        ``recipients`` is an iterable of users or user ids, or a callable
        returning one.  A callable is resolved inside the guarded block, so
        a failing directory lookup is reported on the handle.
        """
        handle = DeliveryHandle()
        try:
            data = check_payload(type, payload)
            if callable(recipients):
                recipients = recipients()
            wanted = list(dict.fromkeys(_recipient_id(r) for r in recipients if r is not None))
            if not wanted:
                return handle
            existing = set(User.objects.filter(pk__in=wanted).values_list('id', flat=True))
            missing = [r for r in wanted if r not in existing]
            if missing:
                logger.warning("dropping notification for unknown recipients %s", missing)
            text = bleach.clean(message or '', strip=True)
            now = timezone.now()
            rows = [
                Notification(recipient_id=rid, sender=sender, message=text, type=type, payload=data, created_at=now)
                for rid in wanted if rid in existing
            ]
            with transaction.atomic():
                Notification.objects.bulk_create(rows)
        except Exception:
            logger.exception("failed to persist %s notification", type)
            handle.failed = True
            return handle

        handle.notification_ids = [str(n.id) for n in rows]
        return handle.merge(self._push(rows, DeliveryHandle()))

    def notify_department(self, hospital, department: str, *, sender=None, message: str, type: str, payload,
                          roles: Optional[Iterable[str]] = None, exclude: Iterable = (),
                          fallback_to_department: bool = False) -> DeliveryHandle:
        """Notify a department's staff, optionally only those holding ``roles``.

        With ``fallback_to_department`` every member is notified when nobody
        in the department holds one of ``roles``.
        """
        skip = {_recipient_id(u) for u in exclude}

        def resolve():
            ids = self.directory.find_users_by_department(hospital, department, roles=roles)
            if not ids and roles and fallback_to_department:
                ids = self.directory.find_users_by_department(hospital, department)
            return [i for i in ids if i not in skip]

        return self.notify(resolve, sender=sender, message=message, type=type, payload=payload)

    def notify_hospital(self, hospital, *, sender=None, message: str, type: str, payload,
                        roles: Optional[Iterable[str]] = None) -> DeliveryHandle:
        return self.notify(lambda: self.directory.find_users_by_hospital(hospital, roles=roles),
                           sender=sender, message=message, type=type, payload=payload)

    def send_critical_result(self, patient, test_type: str, result: str, doctor=None, *, sender=None) -> DeliveryHandle:
        """Alert the patient's doctor about a critical lab result.

        Falls back to every doctor of the patient's current department when
        the patient has no assigned doctor and none is given.
        """
        payload = CriticalResultPayload(patient_id=str(patient.pk), test_type=test_type, result=result)
        message = f"CRITICAL result for {patient.full_name}: {test_type}"
        doctor = doctor or patient.assigned_doctor
        if doctor is not None:
            return self.notify([doctor], sender=sender, message=message,
                               type=NotificationType.CRITICAL_RESULT, payload=payload)
        if not patient.current_department:
            logger.warning("critical result for patient %s has no recipient", patient.pk)
            return DeliveryHandle(failed=True)
        return self.notify_department(patient.hospital, patient.current_department, sender=sender, message=message,
                                      type=NotificationType.CRITICAL_RESULT, payload=payload, roles=[Role.DOCTOR])

    def mark_read(self, notification_id, user) -> Notification:
        """Mark a notification read.  Reading twice keeps the first read time."""
        try:
            n = Notification.objects.filter(pk=notification_id, recipient_id=_recipient_id(user)).first()
        except DjangoValidationError:
            n = None
        if n is None:
            raise NotificationNotFound(f'notification {notification_id} not found')
        if not n.is_read:
            n.is_read = True
            n.read_at = timezone.now()
            n.save(update_fields=['is_read', 'read_at'])
        return n

    def unread_for(self, user):
        return Notification.objects.filter(recipient_id=_recipient_id(user), is_read=False).order_by('created_at')

    def redeliver_pending(self, older_than: Optional[timedelta] = None,
                          max_attempts: Optional[int] = None) -> DeliveryHandle:
        """Push again every undelivered notification older than ``older_than``."""
        older_than = conf.notification_retry_after() if older_than is None else older_than
        max_attempts = conf.notification_max_attempts() if max_attempts is None else max_attempts
        cutoff = timezone.now() - older_than
        rows = list(
            Notification.objects.filter(
                delivered_at__isnull=True, created_at__lte=cutoff, delivery_attempts__lt=max_attempts,
            ).order_by('created_at')
        )
        handle = DeliveryHandle(notification_ids=[str(n.id) for n in rows])
        if rows:
            logger.info("redelivering %d pending notifications", len(rows))
        return self._push(rows, handle)

    def _push(self, rows: List[Notification], handle: DeliveryHandle) -> DeliveryHandle:
        for n in rows:
            try:
                self._send(n)
            except Exception:
                logger.warning("push of notification %s to user %s failed", n.id, n.recipient_id, exc_info=True)
                Notification.objects.filter(pk=n.pk).update(delivery_attempts=F('delivery_attempts') + 1)
                handle.failed = True
                continue
            n.delivered_at = timezone.now()
            Notification.objects.filter(pk=n.pk).update(
                delivered_at=n.delivered_at, delivery_attempts=F('delivery_attempts') + 1,
            )
            handle.delivered += 1
        return handle

    def _send(self, n: Notification) -> None:
        layer = self.channel_layer
        if layer is None:
            raise DownstreamUnavailable('no channel layer configured')
        event = {"type": "notification.message", "notification": serialize_notification(n)}
        async_to_sync(layer.group_send)(user_group(n.recipient_id), event)
