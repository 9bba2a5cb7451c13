from typing import List, Optional

from django.contrib.auth import get_user_model

from patientflow.enums import ADMIN_ROLES, AssignmentStatus, QUEUE_STATUSES, Role, coerce_department
from patientflow.exceptions import NotAuthorizedForDepartment
from patientflow.models import Assignment
from patientflow.services import registry

User = get_user_model()


def _check_viewer(user, hospital, name) -> None:
    """Department staff, hospital admins of the same hospital and super-admins may read."""
    if user.role == Role.SUPER_ADMIN:
        return
    if hospital is not None and user.hospital_id != getattr(hospital, 'pk', hospital):
        raise NotAuthorizedForDepartment(f'user {user.pk} cannot view {name} in another hospital')
    if user.role not in ADMIN_ROLES and user.department != name:
        raise NotAuthorizedForDepartment(f'user {user.pk} cannot view the {name} queue')


def get_queue(department, hospital, *, acting_user=None) -> List[Assignment]:
    """PENDING and IN_PROGRESS work for a department, most urgent first, then oldest first."""
    name = coerce_department(department)
    if acting_user is not None:
        _check_viewer(acting_user, hospital, name)
    qs = (Assignment.objects
          .filter(hospital=hospital, department=name, status__in=QUEUE_STATUSES)
          .select_related('patient', 'current_doctor')
          .order_by('-priority', 'created_at', 'id'))
    return list(qs)


def get_pending_transfers(department, hospital=None, *, acting_user=None) -> List[Assignment]:
    name = coerce_department(department)
    if acting_user is not None:
        if hospital is None and acting_user.role != Role.SUPER_ADMIN:
            hospital = acting_user.hospital_id
        _check_viewer(acting_user, hospital, name)
    qs = Assignment.objects.filter(status=AssignmentStatus.TRANSFER_PENDING, to_department=name)
    if hospital is not None:
        qs = qs.filter(hospital=hospital)
    return list(qs.select_related('patient', 'assigned_by').order_by('created_at', 'id'))


def department_census(hospital, name, *, acting_user=None) -> dict:
    """Occupancy snapshot of one department.

    When ``acting_user`` is given it must be the head of department or an
    administrator.
    """
    dept = registry.lookup(hospital, name)
    if acting_user is not None:
        is_head = dept.head_of_department_id == acting_user.pk
        if not is_head and acting_user.role not in ADMIN_ROLES:
            raise NotAuthorizedForDepartment('only department heads can view the census')

    base = Assignment.objects.filter(hospital=hospital, department=dept.name)
    current = base.filter(status=AssignmentStatus.IN_PROGRESS).count()
    waiting = base.filter(status=AssignmentStatus.PENDING).count()
    doctors = User.objects.filter(hospital=hospital, department=dept.name, role=Role.DOCTOR).count()
    beds = dept.available_beds
    occupancy = f"{current / beds * 100:.2f}" if beds > 0 else '0.00'
    return {
        'department': dept.name,
        'currentPatients': current,
        'waitingPatients': waiting,
        'doctors': doctors,
        'availableBeds': beds,
        'bedOccupancy': occupancy,
    }
