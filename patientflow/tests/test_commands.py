from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from patientflow.enums import CORE_DEPARTMENTS, DepartmentName, NotificationType
from patientflow.models import Department, Hospital, Notification, User
from patientflow.payloads import DepartmentAlertPayload
from patientflow.services import registry
from patientflow.services.notifications import NotificationDispatcher

from .conftest import BrokenLayer

pytestmark = pytest.mark.django_db


def test_seed_hospital():
    out = StringIO()
    call_command('seed_hospital', 'Kisumu County Hospital', '--prefix', 'ksm', stdout=out)

    hospital = Hospital.objects.get(name='Kisumu County Hospital')
    assert Department.objects.filter(hospital=hospital).count() == len(CORE_DEPARTMENTS)
    emergency = registry.lookup(hospital, DepartmentName.EMERGENCY)
    assert emergency.operator_count() == 2
    assert registry.has_capacity(registry.lookup(hospital, DepartmentName.TRIAGE))
    assert not registry.has_capacity(registry.lookup(hospital, DepartmentName.RADIOLOGY))
    assert User.objects.get(username='ksm_er1').department == DepartmentName.EMERGENCY
    assert 'Hospital seeded.' in out.getvalue()

    with pytest.raises(CommandError):
        call_command('seed_hospital', 'Kisumu County Hospital', stdout=StringIO())


def test_retry_notifications(make_user):
    nurse = make_user('nurse')
    NotificationDispatcher(channel_layer=BrokenLayer()).notify(
        [nurse], message='x', type=NotificationType.DEPARTMENT_ALERT,
        payload=DepartmentAlertPayload(patient_id='p', department='TRIAGE', event='registered'),
    )
    out = StringIO()
    call_command('retry_notifications', '--older-than', '0', stdout=out)

    assert 'Redelivered 1/1' in out.getvalue()
    assert Notification.objects.get().delivered_at is not None
