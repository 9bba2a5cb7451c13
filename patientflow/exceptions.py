"""
Error taxonomy for the patient-flow core.

Every failure raised by the registry or the flow engine is a
:class:`FlowError`.  The class hierarchy groups errors into the kinds
callers branch on (not found, failed precondition, conflict) and each
concrete class carries a stable ``default_code`` naming the violated
precondition.
"""
import functools

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler


class FlowError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'patient flow error'
    default_code = 'flow_error'

    @property
    def code(self) -> str:
        return self.default_code

    def as_dict(self) -> dict:
        return {'code': self.code, 'message': str(self.detail)}


class NotFound(FlowError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'not found'
    default_code = 'not_found'


class PreconditionFailed(FlowError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'precondition failed'
    default_code = 'precondition_failed'


class Conflict(FlowError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'conflict'
    default_code = 'conflict'


class DownstreamUnavailable(FlowError):
    """Raised inside the dispatcher only; never reaches flow engine callers."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'downstream collaborator unavailable'
    default_code = 'downstream_unavailable'


# --- not found --------------------------------------------------------------

class DepartmentNotFound(NotFound):
    default_detail = 'department not found'
    default_code = 'department_not_found'


class PatientNotFound(NotFound):
    default_detail = 'patient not found'
    default_code = 'patient_not_found'


class AssignmentNotFound(NotFound):
    default_detail = 'assignment not found'
    default_code = 'assignment_not_found'


class UserNotFound(NotFound):
    default_detail = 'user not found'
    default_code = 'user_not_found'


class NotificationNotFound(NotFound):
    default_detail = 'notification not found'
    default_code = 'notification_not_found'


# --- preconditions ----------------------------------------------------------

class InvalidDepartmentName(PreconditionFailed):
    default_detail = 'unknown department name'
    default_code = 'invalid_department_name'


class DepartmentHasNoOperators(PreconditionFailed):
    default_detail = 'department has no active operators'
    default_code = 'department_has_no_operators'


class DepartmentNotOperational(PreconditionFailed):
    default_detail = 'department is not operational'
    default_code = 'department_not_operational'


class TargetNotOperational(PreconditionFailed):
    default_detail = 'target department not found or not operational'
    default_code = 'target_not_operational'


class TargetHasNoOperators(PreconditionFailed):
    default_detail = 'target department has no active operators'
    default_code = 'target_has_no_operators'


class LocationMismatch(PreconditionFailed):
    default_detail = 'patient is not in the stated department'
    default_code = 'location_mismatch'


class SameDepartment(PreconditionFailed):
    default_detail = 'source and target department are the same'
    default_code = 'same_department'


class WrongActingDepartment(PreconditionFailed):
    default_detail = 'acting user is not assigned to the source department'
    default_code = 'wrong_acting_department'


class WrongDepartment(PreconditionFailed):
    default_detail = 'acting user is not assigned to the receiving department'
    default_code = 'wrong_department'


class NotAuthorizedForDepartment(PreconditionFailed):
    default_detail = 'not authorized to modify assignments in this department'
    default_code = 'not_authorized_for_department'


class InvalidDoctor(PreconditionFailed):
    default_detail = 'doctor does not exist in this department'
    default_code = 'invalid_doctor'


class NotOwner(PreconditionFailed):
    default_detail = 'only the doctor holding the assignment may complete it'
    default_code = 'not_owner'


class RoleNotPermitted(PreconditionFailed):
    default_detail = 'role not permitted in this department'
    default_code = 'role_not_permitted'


class InsufficientOperators(PreconditionFailed):
    default_detail = 'department roster below minimum operator count'
    default_code = 'insufficient_operators'


class NotMember(PreconditionFailed):
    default_detail = 'user is not on the department roster'
    default_code = 'not_member'


class NotEligibleForDischarge(PreconditionFailed):
    default_detail = 'patient not in a discharge stage and user not authorized to discharge'
    default_code = 'not_eligible_for_discharge'


# --- conflicts --------------------------------------------------------------

class DuplicateDepartment(Conflict):
    default_detail = 'department already exists in this hospital'
    default_code = 'duplicate_department'


class AlreadyMember(Conflict):
    default_detail = 'user is already on the department roster'
    default_code = 'already_member'


class AlreadyDischarged(Conflict):
    default_detail = 'patient journey already completed'
    default_code = 'already_discharged'


class InvalidStatusTransition(Conflict):
    default_detail = 'assignment status does not allow this transition'
    default_code = 'invalid_status_transition'


def log_rejections(log):
    """Log flow and validation errors raised by the wrapped operation at INFO, then re-raise."""
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except APIException as e:
                log.info("%s rejected: %s", fn.__name__, e.detail)
                raise
        return wrapper
    return decorator


def api_exception_handler(exc, context):
    if isinstance(exc, FlowError):
        return Response({'ok': False, 'error': exc.as_dict()}, status=exc.status_code)
    resp = drf_exception_handler(exc, context)
    if resp is None:
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    # normalize response
    detail = None
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    return Response({'ok': False, 'error': {'code': 'api_error', 'message': detail}}, status=resp.status_code)
