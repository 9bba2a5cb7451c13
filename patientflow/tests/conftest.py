import pytest

from patientflow.enums import DepartmentName, OPEN_ASSIGNMENT_STATUSES, Role
from patientflow.models import Assignment, Patient, User
from patientflow.services import registry
from patientflow.services.flow import FlowEngine
from patientflow.services.notifications import NotificationDispatcher


class RecordingLayer:
    """Channel layer stand-in that records group sends."""

    def __init__(self):
        self.sent = []

    async def group_send(self, group, message):
        self.sent.append((group, message))


class BrokenLayer:
    async def group_send(self, group, message):
        raise ConnectionError('channel layer down')


@pytest.fixture
def layer():
    return RecordingLayer()


@pytest.fixture
def dispatcher(layer):
    return NotificationDispatcher(channel_layer=layer)


@pytest.fixture
def engine(dispatcher):
    return FlowEngine(notifier=dispatcher)


@pytest.fixture
def hospital(db):
    hospital, _ = registry.onboard_hospital('Test General Hospital', county='Nairobi')
    return hospital


@pytest.fixture
def make_user(db, hospital):
    counter = {'n': 0}

    def _make(role, department=None, *, hospital_=hospital, username=None):
        counter['n'] += 1
        return User.objects.create_user(
            username=username or f"{role}{counter['n']}", password='P@ssw0rd1', role=role,
            hospital=hospital_, department=department,
        )
    return _make


@pytest.fixture
def staff(hospital, make_user):
    """Add a new user of ``role`` to the roster of department ``name``."""
    def _staff(name, role):
        user = make_user(role)
        registry.add_operator(registry.lookup(hospital, name).pk, user.pk)
        user.refresh_from_db()
        return user
    return _staff


@pytest.fixture
def receptionist(staff):
    return staff(DepartmentName.RECEPTION, Role.RECEPTIONIST)


@pytest.fixture
def triage_nurse(staff):
    return staff(DepartmentName.TRIAGE, Role.NURSE)


@pytest.fixture
def demographics():
    return {'firstName': 'Amina', 'lastName': 'Otieno', 'gender': 'Female', 'phone': '0712000000'}


def assert_flow_invariants(patient: Patient):
    """At most one open assignment; current department matches it (or is null)."""
    patient.refresh_from_db()
    open_ = list(Assignment.objects.filter(patient=patient, status__in=OPEN_ASSIGNMENT_STATUSES))
    assert len(open_) <= 1
    if open_:
        assert patient.current_department == open_[0].department
    else:
        assert patient.current_department is None
