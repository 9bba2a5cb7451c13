from datetime import timedelta

import pytest
from django.utils import timezone

from patientflow.enums import AssignmentStatus, DepartmentName, Priority, Role
from patientflow.exceptions import NotAuthorizedForDepartment
from patientflow.models import Assignment, Patient
from patientflow.services import queue, registry

pytestmark = pytest.mark.django_db


def _queued(hospital, actor, name, priority, minutes_ago, status=AssignmentStatus.PENDING):
    patient = Patient.objects.create(hospital=hospital, first_name=name, last_name='Q',
                                     current_department=DepartmentName.TRIAGE)
    return Assignment.objects.create(
        patient=patient, hospital=hospital, department=DepartmentName.TRIAGE, assigned_by=actor,
        status=status, priority=priority, created_at=timezone.now() - timedelta(minutes=minutes_ago),
    )


def test_queue_orders_by_priority_then_age(hospital, receptionist):
    low = _queued(hospital, receptionist, 'low', Priority.LOW, 50)
    med_old = _queued(hospital, receptionist, 'med-old', Priority.MEDIUM, 40)
    med_new = _queued(hospital, receptionist, 'med-new', Priority.MEDIUM, 5)
    critical = _queued(hospital, receptionist, 'crit', Priority.CRITICAL, 1)
    high = _queued(hospital, receptionist, 'high', Priority.HIGH, 10, status=AssignmentStatus.IN_PROGRESS)
    _queued(hospital, receptionist, 'done', Priority.CRITICAL, 60, status=AssignmentStatus.COMPLETED)
    _queued(hospital, receptionist, 'moving', Priority.CRITICAL, 60, status=AssignmentStatus.TRANSFER_PENDING)

    result = queue.get_queue('TRIAGE', hospital)

    assert [a.pk for a in result] == [critical.pk, high.pk, med_old.pk, med_new.pk, low.pk]


def test_queue_is_per_hospital(hospital, receptionist):
    _queued(hospital, receptionist, 'mine', Priority.MEDIUM, 1)
    other, _ = registry.onboard_hospital('Other Hospital')
    assert queue.get_queue(DepartmentName.TRIAGE, other) == []
    assert len(queue.get_queue(DepartmentName.TRIAGE, hospital)) == 1


def test_department_census(hospital, make_user, receptionist):
    doctor = make_user(Role.DOCTOR)
    dept = registry.create_department(hospital, DepartmentName.INPATIENT, 'CLINICAL',
                                      initial_operators=[doctor], available_beds=8)
    patient = Patient.objects.create(hospital=hospital, first_name='A', last_name='B',
                                     current_department=DepartmentName.INPATIENT)
    for status in (AssignmentStatus.IN_PROGRESS, AssignmentStatus.IN_PROGRESS, AssignmentStatus.PENDING):
        Assignment.objects.create(patient=patient, hospital=hospital, department=dept.name,
                                  assigned_by=receptionist, status=status)

    census = queue.department_census(hospital, 'INPATIENT', acting_user=doctor)

    assert census == {
        'department': 'INPATIENT',
        'currentPatients': 2,
        'waitingPatients': 1,
        'doctors': 1,
        'availableBeds': 8,
        'bedOccupancy': '25.00',
    }
    with pytest.raises(NotAuthorizedForDepartment):
        queue.department_census(hospital, 'INPATIENT', acting_user=receptionist)


def test_census_without_beds(hospital):
    assert queue.department_census(hospital, DepartmentName.PHARMACY)['bedOccupancy'] == '0.00'


def test_queue_viewers(hospital, make_user, receptionist, triage_nurse):
    _queued(hospital, receptionist, 'mine', Priority.MEDIUM, 1)
    admin = make_user(Role.HOSPITAL_ADMIN)
    root = make_user(Role.SUPER_ADMIN, hospital_=None)

    for viewer in (triage_nurse, admin, root):
        assert len(queue.get_queue('TRIAGE', hospital, acting_user=viewer)) == 1
    with pytest.raises(NotAuthorizedForDepartment):
        queue.get_queue('TRIAGE', hospital, acting_user=receptionist)

    other, _ = registry.onboard_hospital('Other Hospital')
    with pytest.raises(NotAuthorizedForDepartment):
        queue.get_queue('TRIAGE', hospital, acting_user=make_user(Role.HOSPITAL_ADMIN, hospital_=other))
