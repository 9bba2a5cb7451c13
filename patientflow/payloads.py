"""
Notification payloads.

Each :class:`~patientflow.enums.NotificationType` carries exactly one
payload shape.  Payloads are stored as JSON on the notification row using
camelCase keys, and :func:`parse_payload` turns a stored dict back into
the matching dataclass.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from .enums import NotificationType


class PayloadError(ValueError):
    """Raised when a stored payload does not match its notification type."""


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


@dataclass(frozen=True)
class _Payload:
    def to_dict(self) -> Dict[str, Any]:
        return {_camel(k): v for k, v in asdict(self).items()}


@dataclass(frozen=True)
class DepartmentAlertPayload(_Payload):
    patient_id: str
    department: Optional[str]
    event: str


@dataclass(frozen=True)
class PatientTransferPayload(_Payload):
    patient_id: str
    assignment_id: str
    from_department: str
    to_department: str
    reason: str = ''
    stage: str = 'requested'


@dataclass(frozen=True)
class CriticalResultPayload(_Payload):
    patient_id: str
    test_type: str
    result: str


@dataclass(frozen=True)
class NewAssignmentPayload(_Payload):
    assignment_id: str
    patient_id: str
    department: str


@dataclass(frozen=True)
class BillingUpdatePayload(_Payload):
    patient_id: str
    billing_id: str
    total_amount: str


PAYLOAD_TYPES = {
    NotificationType.DEPARTMENT_ALERT: DepartmentAlertPayload,
    NotificationType.PATIENT_TRANSFER: PatientTransferPayload,
    NotificationType.CRITICAL_RESULT: CriticalResultPayload,
    NotificationType.NEW_ASSIGNMENT: NewAssignmentPayload,
    NotificationType.BILLING_UPDATE: BillingUpdatePayload,
}


def payload_class(ntype: str):
    try:
        return PAYLOAD_TYPES[NotificationType(ntype)]
    except (KeyError, ValueError):
        raise PayloadError(f'unknown notification type: {ntype!r}') from None


def parse_payload(ntype: str, data: Optional[Dict[str, Any]]) -> _Payload:
    """Build the payload dataclass for ``ntype`` from its stored JSON form.

    Unknown keys, missing required keys and non-dict data all raise
    :class:`PayloadError`.
    """
    cls = payload_class(ntype)
    if not isinstance(data, dict):
        raise PayloadError(f'{ntype} payload must be an object')
    by_key = {_camel(f.name): f for f in fields(cls)}
    unknown = set(data) - set(by_key)
    if unknown:
        raise PayloadError(f'{ntype} payload has unexpected keys: {sorted(unknown)}')
    kwargs = {}
    for key, f in by_key.items():
        if key in data:
            kwargs[f.name] = data[key]
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise PayloadError(f'{ntype} payload is incomplete: {exc}') from None


def check_payload(ntype: str, payload) -> Dict[str, Any]:
    """Return the JSON form of ``payload``, verifying it matches ``ntype``."""
    cls = payload_class(ntype)
    if isinstance(payload, _Payload):
        if not isinstance(payload, cls):
            raise PayloadError(f'{type(payload).__name__} cannot be sent as {ntype}')
        return payload.to_dict()
    return parse_payload(ntype, payload).to_dict()
