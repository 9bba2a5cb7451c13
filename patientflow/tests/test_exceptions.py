from rest_framework.exceptions import PermissionDenied

from patientflow import exceptions as exc
from patientflow.exceptions import api_exception_handler


def test_error_kinds_map_to_status_codes():
    assert exc.PatientNotFound.status_code == 404
    assert exc.LocationMismatch.status_code == 400
    assert exc.DuplicateDepartment.status_code == 409
    assert issubclass(exc.WrongActingDepartment, exc.PreconditionFailed)
    assert issubclass(exc.AlreadyDischarged, exc.Conflict)


def test_flow_errors_name_the_violated_precondition():
    resp = api_exception_handler(exc.TargetHasNoOperators('EMERGENCY has no active operators'), {})
    assert resp.status_code == 400
    assert resp.data == {
        'ok': False,
        'error': {'code': 'target_has_no_operators', 'message': 'EMERGENCY has no active operators'},
    }


def test_default_message_is_used():
    assert exc.NotOwner().as_dict() == {
        'code': 'not_owner', 'message': 'only the doctor holding the assignment may complete it',
    }


def test_other_api_errors_are_normalised():
    resp = api_exception_handler(PermissionDenied('nope'), {})
    assert resp.status_code == 403
    assert resp.data['ok'] is False
    assert resp.data['error']['code'] == 'api_error'


def test_unexpected_errors_become_server_errors():
    resp = api_exception_handler(RuntimeError('boom'), {})
    assert resp.status_code == 500
    assert resp.data['error']['code'] == 'server_error'
