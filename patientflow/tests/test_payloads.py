import pytest

from patientflow.enums import NotificationType
from patientflow.payloads import (
    PAYLOAD_TYPES,
    BillingUpdatePayload,
    PatientTransferPayload,
    PayloadError,
    check_payload,
    parse_payload,
)


def test_every_notification_type_has_a_payload():
    assert set(PAYLOAD_TYPES) == set(NotificationType)


def test_parse_transfer_payload_with_defaults():
    p = parse_payload('PATIENT_TRANSFER', {
        'patientId': 'p', 'assignmentId': 'a', 'fromDepartment': 'TRIAGE', 'toDepartment': 'EMERGENCY',
    })
    assert isinstance(p, PatientTransferPayload)
    assert p.stage == 'requested'
    assert p.to_dict()['toDepartment'] == 'EMERGENCY'


@pytest.mark.parametrize('ntype, data', [
    ('SMS_BLAST', {}),
    ('BILLING_UPDATE', {'patientId': 'p', 'billingId': 'b'}),
    ('BILLING_UPDATE', {'patientId': 'p', 'billingId': 'b', 'totalAmount': '1', 'currency': 'KES'}),
    ('CRITICAL_RESULT', ['not', 'a', 'dict']),
])
def test_unknown_shapes_are_rejected(ntype, data):
    with pytest.raises(PayloadError):
        parse_payload(ntype, data)


def test_check_payload_rejects_wrong_variant():
    bill = BillingUpdatePayload(patient_id='p', billing_id='b', total_amount='10.00')
    assert check_payload(NotificationType.BILLING_UPDATE, bill)['totalAmount'] == '10.00'
    with pytest.raises(PayloadError):
        check_payload(NotificationType.CRITICAL_RESULT, bill)
