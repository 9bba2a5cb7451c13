from datetime import timedelta

import pytest
from django.utils import timezone

from patientflow.enums import DepartmentName, NotificationType, PatientStatus, Role
from patientflow.exceptions import NotificationNotFound
from patientflow.models import Notification, Patient
from patientflow.payloads import DepartmentAlertPayload, NewAssignmentPayload
from patientflow.services.directory import UserDirectory
from patientflow.services.flow import FlowEngine
from patientflow.services.notifications import NotificationDispatcher

from .conftest import BrokenLayer, RecordingLayer, assert_flow_invariants

pytestmark = pytest.mark.django_db


class BrokenDirectory(UserDirectory):
    def find_users_by_department(self, hospital, department, roles=None):
        raise ConnectionError('directory down')

    def find_users_by_hospital(self, hospital, roles=None):
        raise ConnectionError('directory down')


def _alert(patient_id='p1'):
    return DepartmentAlertPayload(patient_id=patient_id, department='TRIAGE', event='registered')


def test_notify_deduplicates_and_pushes(dispatcher, layer, make_user):
    a, b = make_user(Role.NURSE), make_user(Role.DOCTOR)
    handle = dispatcher.notify([a, b.pk, a.pk], message='hello', type=NotificationType.DEPARTMENT_ALERT,
                               payload=_alert())

    assert len(handle.notification_ids) == 2
    assert handle.delivered == 2
    assert handle.failed is False
    assert [g for g, _ in layer.sent] == [f'user.{a.pk}', f'user.{b.pk}']
    event = layer.sent[0][1]
    assert event['type'] == 'notification.message'
    assert event['notification']['payload'] == {'patientId': 'p1', 'department': 'TRIAGE', 'event': 'registered'}
    row = Notification.objects.get(recipient=a)
    assert row.delivered_at is not None
    assert row.delivery_attempts == 1


def test_notify_drops_unknown_recipients(dispatcher, make_user):
    a = make_user(Role.NURSE)
    handle = dispatcher.notify([a.pk, 987654], message='x', type=NotificationType.DEPARTMENT_ALERT,
                               payload=_alert())
    assert len(handle.notification_ids) == 1
    assert Notification.objects.count() == 1


def test_notify_sanitises_message(dispatcher, make_user):
    a = make_user(Role.NURSE)
    dispatcher.notify([a], message='<img src=x onerror=alert(1)>Bed 4', type=NotificationType.DEPARTMENT_ALERT,
                      payload=_alert())
    assert Notification.objects.get().message == 'Bed 4'


def test_mismatched_payload_is_reported_not_raised(dispatcher, make_user):
    a = make_user(Role.NURSE)
    handle = dispatcher.notify([a], message='x', type=NotificationType.DEPARTMENT_ALERT,
                               payload=NewAssignmentPayload(assignment_id='a', patient_id='p', department='TRIAGE'))
    assert handle.failed is True
    assert Notification.objects.count() == 0


def test_failed_push_is_retried(make_user):
    a = make_user(Role.NURSE)
    broken = NotificationDispatcher(channel_layer=BrokenLayer())
    handle = broken.notify([a], message='x', type=NotificationType.DEPARTMENT_ALERT, payload=_alert())

    assert handle.failed is True
    assert handle.delivered == 0
    row = Notification.objects.get()
    assert row.delivered_at is None
    assert row.delivery_attempts == 1

    layer = RecordingLayer()
    retry = NotificationDispatcher(channel_layer=layer).redeliver_pending(older_than=timedelta(0))
    row.refresh_from_db()
    assert retry.delivered == 1
    assert row.delivered_at is not None
    assert row.delivery_attempts == 2
    assert layer.sent[0][0] == f'user.{a.pk}'


def test_redelivery_respects_age_and_attempts(make_user):
    a = make_user(Role.NURSE)
    NotificationDispatcher(channel_layer=BrokenLayer()).notify(
        [a], message='x', type=NotificationType.DEPARTMENT_ALERT, payload=_alert())
    layer = RecordingLayer()
    d = NotificationDispatcher(channel_layer=layer)

    assert d.redeliver_pending(older_than=timedelta(hours=1)).notification_ids == []
    assert d.redeliver_pending(older_than=timedelta(0), max_attempts=1).notification_ids == []
    Notification.objects.update(created_at=timezone.now() - timedelta(hours=2))
    assert d.redeliver_pending(older_than=timedelta(hours=1)).delivered == 1


def test_flow_survives_a_dead_channel_layer(hospital, receptionist, triage_nurse, demographics):
    engine = FlowEngine(notifier=NotificationDispatcher(channel_layer=BrokenLayer()))
    patient, assignment = engine.register_patient(hospital, demographics, 'TRIAGE', receptionist)
    patient.refresh_from_db()
    assert patient.current_department == DepartmentName.TRIAGE
    assert Notification.objects.filter(recipient=triage_nurse, delivered_at__isnull=True).count() == 1


def test_mark_read_is_monotonic(dispatcher, make_user):
    a, b = make_user(Role.NURSE), make_user(Role.NURSE)
    handle = dispatcher.notify([a], message='x', type=NotificationType.DEPARTMENT_ALERT, payload=_alert())
    nid = handle.notification_ids[0]

    with pytest.raises(NotificationNotFound):
        dispatcher.mark_read(nid, b)
    with pytest.raises(NotificationNotFound):
        dispatcher.mark_read('not-a-uuid', a)

    first = dispatcher.mark_read(nid, a)
    assert first.is_read is True
    again = dispatcher.mark_read(nid, a)
    assert again.read_at == first.read_at
    assert list(dispatcher.unread_for(a)) == []


def test_notify_department_filters_roles(dispatcher, hospital, staff):
    doctor = staff(DepartmentName.EMERGENCY, Role.DOCTOR)
    staff(DepartmentName.EMERGENCY, Role.NURSE)
    handle = dispatcher.notify_department(hospital, 'EMERGENCY', message='x', type=NotificationType.DEPARTMENT_ALERT,
                                          payload=_alert(), roles=[Role.DOCTOR])
    assert len(handle.notification_ids) == 1
    assert Notification.objects.get().recipient_id == doctor.pk


def test_critical_result_goes_to_assigned_doctor(dispatcher, hospital, staff, make_user):
    doctor = staff(DepartmentName.EMERGENCY, Role.DOCTOR)
    patient = Patient.objects.create(hospital=hospital, first_name='Baraka', last_name='O',
                                     current_department=DepartmentName.EMERGENCY,
                                     status=PatientStatus.IN_TREATMENT, assigned_doctor=doctor)
    tech = make_user(Role.LAB_TECHNICIAN)
    dispatcher.send_critical_result(patient, 'Potassium', '6.8 mmol/L', sender=tech)

    n = Notification.objects.get(type=NotificationType.CRITICAL_RESULT)
    assert n.recipient_id == doctor.pk
    assert n.sender_id == tech.pk
    assert n.parsed_payload().result == '6.8 mmol/L'


def test_critical_result_falls_back_to_department_doctors(dispatcher, hospital, staff):
    d1 = staff(DepartmentName.EMERGENCY, Role.DOCTOR)
    d2 = staff(DepartmentName.EMERGENCY, Role.DOCTOR)
    staff(DepartmentName.EMERGENCY, Role.NURSE)
    patient = Patient.objects.create(hospital=hospital, first_name='Zawadi', last_name='M',
                                     current_department=DepartmentName.EMERGENCY)
    handle = dispatcher.send_critical_result(patient, 'Troponin', 'elevated')
    assert set(Notification.objects.values_list('recipient_id', flat=True)) == {d1.pk, d2.pk}
    assert handle.delivered == 2


def test_directory_failure_is_reported_on_the_handle(hospital, layer):
    d = NotificationDispatcher(BrokenDirectory(), channel_layer=layer)

    handle = d.notify_department(hospital, 'TRIAGE', message='x', type=NotificationType.DEPARTMENT_ALERT,
                                 payload=_alert())
    assert handle.failed is True
    assert handle.notification_ids == []
    assert d.notify_hospital(hospital, message='x', type=NotificationType.DEPARTMENT_ALERT,
                             payload=_alert()).failed is True
    assert layer.sent == []


def test_flow_survives_a_failing_directory(hospital, receptionist, triage_nurse, staff, layer, demographics):
    staff(DepartmentName.EMERGENCY, Role.DOCTOR)
    directory = BrokenDirectory()
    engine = FlowEngine(directory=directory, notifier=NotificationDispatcher(directory, channel_layer=layer))

    patient, _ = engine.register_patient(hospital, demographics, 'TRIAGE', receptionist)
    engine.transfer_patient(hospital, patient.pk, 'TRIAGE', 'EMERGENCY', 'chest pain', triage_nurse)

    patient.refresh_from_db()
    assert patient.current_department == DepartmentName.EMERGENCY
    assert patient.status == PatientStatus.TRANSFERRED
    assert Notification.objects.count() == 0
    assert_flow_invariants(patient)
