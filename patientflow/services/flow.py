"""
Patient flow engine.

The engine moves a patient through departments: registration, routing,
doctor pickup, completion, transfer between departments, acceptance and
discharge.  Every operation follows the same shape:

1. validate inputs and preconditions, raising a :class:`FlowError`
   before anything is written;
2. inside ``transaction.atomic()`` lock the patient row, re-read the
   assignments it touches and write the ledger and patient changes
   together with an audit event;
3. after the block, hand the alert to the notification dispatcher.

Step 3 never raises, so a committed state change is never reported as
a failure because a notification could not be delivered.
"""
import logging
from typing import Optional, Tuple

import bleach
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from patientflow import conf
from patientflow.enums import (
    ADMIN_ROLES,
    OPEN_ASSIGNMENT_STATUSES,
    TERMINAL_PATIENT_STATUSES,
    AssignmentStatus,
    DepartmentName,
    NotificationType,
    PatientStatus,
    Role,
    can_transition,
    coerce_department,
)
from patientflow.exceptions import (
    AlreadyDischarged,
    AssignmentNotFound,
    DepartmentHasNoOperators,
    DepartmentNotOperational,
    InvalidDoctor,
    InvalidStatusTransition,
    LocationMismatch,
    NotAuthorizedForDepartment,
    NotEligibleForDischarge,
    NotOwner,
    PatientNotFound,
    SameDepartment,
    TargetHasNoOperators,
    TargetNotOperational,
    WrongActingDepartment,
    WrongDepartment,
    log_rejections,
)
from patientflow.models import Assignment, BillingRecord, Department, Patient
from patientflow.payloads import (
    BillingUpdatePayload,
    DepartmentAlertPayload,
    NewAssignmentPayload,
    PatientTransferPayload,
)
from patientflow.serializers.billing import BillingDetailsSerializer
from patientflow.serializers.patient import DemographicsSerializer, coerce_priority
from patientflow.services import queue, registry
from patientflow.services.audit import AuditLog
from patientflow.services.billing import BillingService
from patientflow.services.directory import UserDirectory
from patientflow.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

User = get_user_model()


def _pk(obj):
    return getattr(obj, 'pk', obj)


def _clean(text: Optional[str]) -> str:
    return bleach.clean((text or '').strip(), strip=True)


class FlowEngine:

    def __init__(self, directory: Optional[UserDirectory] = None, notifier: Optional[NotificationDispatcher] = None,
                 billing: Optional[BillingService] = None, audit: Optional[AuditLog] = None):
        self.directory = directory or UserDirectory()
        self.notifier = notifier or NotificationDispatcher(self.directory)
        self.billing = billing or BillingService()
        self.audit = audit or AuditLog()

    # ------------------------------------------------------------------
    # lookups (locking variants must run inside transaction.atomic)
    # ------------------------------------------------------------------

    def _lock_patient(self, patient_id, hospital=None) -> Patient:
        qs = Patient.objects.select_for_update()
        if hospital is not None:
            qs = qs.filter(hospital=hospital)
        try:
            patient = qs.filter(pk=_pk(patient_id)).first()
        except DjangoValidationError:
            patient = None
        if patient is None:
            raise PatientNotFound(f'patient {patient_id} not found')
        return patient

    def _find_assignment(self, assignment_id) -> Assignment:
        try:
            a = Assignment.objects.filter(pk=_pk(assignment_id)).first()
        except DjangoValidationError:
            a = None
        if a is None:
            raise AssignmentNotFound(f'assignment {assignment_id} not found')
        return a

    def _lock_assignment(self, assignment_id) -> Tuple[Patient, Assignment]:
        """Lock the owning patient, then re-read the assignment under that lock."""
        a = self._find_assignment(assignment_id)
        patient = self._lock_patient(a.patient_id)
        a = Assignment.objects.select_for_update().get(pk=a.pk)
        return patient, a

    def _open_assignments(self, patient: Patient):
        return list(
            Assignment.objects.select_for_update()
            .filter(patient=patient, status__in=OPEN_ASSIGNMENT_STATUSES)
            .order_by('created_at')
        )

    def _staffed_department(self, hospital, name) -> Department:
        dept = registry.lookup(hospital, name)
        if not dept.is_operational:
            raise DepartmentNotOperational(f'{dept.name} is not operational')
        if not registry.has_capacity(dept):
            raise DepartmentHasNoOperators(f'{dept.name} has no active operators')
        return dept

    def _check_hospital(self, user, hospital, error=NotAuthorizedForDepartment) -> None:
        if user.role != Role.SUPER_ADMIN and user.hospital_id != _pk(hospital):
            raise error(f'user {user.pk} does not belong to hospital {_pk(hospital)}')

    def _may_act_in(self, user, assignment: Assignment) -> bool:
        if user.role == Role.SUPER_ADMIN:
            return True
        if user.hospital_id != assignment.hospital_id:
            return False
        return user.role in ADMIN_ROLES or user.department == assignment.department

    def _supersede(self, open_assignments, now) -> None:
        for prior in open_assignments:
            prior.status = AssignmentStatus.TRANSFERRED
            prior.completed_at = now
            prior.save(update_fields=['status', 'completed_at', 'updated_at'])

    # ------------------------------------------------------------------
    # registration & routing
    # ------------------------------------------------------------------

    @log_rejections(logger)
    def register_patient(self, hospital, demographics: dict, initial_department_name, actor,
                         priority=None) -> Tuple[Patient, Assignment]:
        self._check_hospital(actor, hospital)
        s = DemographicsSerializer(data=demographics)
        s.is_valid(raise_exception=True)
        prio = coerce_priority(priority)
        dept = self._staffed_department(hospital, initial_department_name)

        with transaction.atomic():
            patient = Patient.objects.create(hospital=hospital, status=PatientStatus.REGISTERED, **s.validated_data)
            assignment = Assignment.objects.create(
                patient=patient, hospital=hospital, department=dept.name,
                assigned_by=actor, status=AssignmentStatus.PENDING, priority=prio,
            )
            patient.current_department = dept.name
            patient.save(update_fields=['current_department', 'updated_at'])
            self.audit.record(user=actor, action='patient_register', obj=patient,
                              detail={'department': dept.name, 'assignmentId': str(assignment.id)})

        logger.info("patient %s registered to %s by user %s", patient.pk, dept.name, actor.pk)
        self.notifier.notify_department(
            hospital, dept.name, sender=actor,
            message=f"New patient {patient.full_name} registered to {dept.get_name_display()}",
            type=NotificationType.DEPARTMENT_ALERT,
            payload=DepartmentAlertPayload(patient_id=str(patient.pk), department=dept.name, event='registered'),
        )
        return patient, assignment

    @log_rejections(logger)
    def assign_to_department(self, hospital, patient_id, department_name, actor, priority=None,
                             notes: str = '') -> Tuple[Patient, Assignment]:
        """Route a patient to a department, superseding any open assignment."""
        self._check_hospital(actor, hospital)
        with transaction.atomic():
            patient = self._lock_patient(patient_id, hospital)
            if patient.status in TERMINAL_PATIENT_STATUSES:
                raise AlreadyDischarged(f'patient {patient.pk} is {patient.status}')
            dept = self._staffed_department(hospital, department_name)

            now = timezone.now()
            prior = self._open_assignments(patient)
            if priority is None and prior:
                prio = coerce_priority(prior[-1].priority)
            else:
                prio = coerce_priority(priority)
            self._supersede(prior, now)

            assignment = Assignment.objects.create(
                patient=patient, hospital=hospital, department=dept.name,
                from_department=patient.current_department, assigned_by=actor,
                status=AssignmentStatus.PENDING, priority=prio, notes=_clean(notes),
            )
            patient.current_department = dept.name
            fields = ['current_department', 'updated_at']
            if patient.status == PatientStatus.IN_TREATMENT:
                # the treating doctor's assignment was superseded
                patient.status = PatientStatus.ACTIVE
                patient.assigned_doctor = None
                fields += ['status', 'assigned_doctor']
            patient.save(update_fields=fields)
            self.audit.record(user=actor, action='patient_assign_department', obj=patient,
                              detail={'department': dept.name, 'assignmentId': str(assignment.id),
                                      'superseded': [str(p.id) for p in prior]})

        logger.info("patient %s routed to %s by user %s", patient.pk, dept.name, actor.pk)
        self.notifier.notify_department(
            hospital, dept.name, sender=actor,
            message=f"Patient {patient.full_name} assigned to {dept.get_name_display()}",
            type=NotificationType.DEPARTMENT_ALERT,
            payload=DepartmentAlertPayload(patient_id=str(patient.pk), department=dept.name, event='assigned'),
        )
        return patient, assignment

    @log_rejections(logger)
    def assign_to_doctor(self, assignment_id, doctor_id, acting_user) -> Assignment:
        with transaction.atomic():
            patient, a = self._lock_assignment(assignment_id)
            if not self._may_act_in(acting_user, a):
                raise NotAuthorizedForDepartment(f'user {acting_user.pk} cannot modify {a.department} assignments')
            doctor = User.objects.filter(pk=_pk(doctor_id), role=Role.DOCTOR, hospital_id=a.hospital_id,
                                         department=a.department, is_active=True).first()
            if doctor is None:
                raise InvalidDoctor(f'doctor {doctor_id} does not exist in {a.department}')
            if not can_transition(a.status, AssignmentStatus.IN_PROGRESS):
                raise InvalidStatusTransition(f'cannot start an assignment that is {a.status}')

            a.status = AssignmentStatus.IN_PROGRESS
            a.current_doctor = doctor
            a.assigned_at = timezone.now()
            a.save(update_fields=['status', 'current_doctor', 'assigned_at', 'updated_at'])
            patient.status = PatientStatus.IN_TREATMENT
            patient.assigned_doctor = doctor
            patient.save(update_fields=['status', 'assigned_doctor', 'updated_at'])
            self.audit.record(user=acting_user, action='assignment_doctor', obj=a, detail={'doctorId': doctor.pk})

        logger.info("assignment %s picked up by doctor %s", a.pk, doctor.pk)
        self.notifier.notify(
            [doctor], sender=acting_user,
            message=f"You have been assigned patient {patient.full_name} in {a.get_department_display()}",
            type=NotificationType.NEW_ASSIGNMENT,
            payload=NewAssignmentPayload(assignment_id=str(a.pk), patient_id=str(patient.pk), department=a.department),
        )
        return a

    @log_rejections(logger)
    def complete_assignment(self, assignment_id, acting_doctor, notes: str = '',
                            requires_follow_up: bool = False) -> Assignment:
        """Close the doctor's assignment.

        With follow-up the patient goes back into the same department's
        queue as a new PENDING assignment; without it the patient is
        discharged (no billing, no eligibility check).
        """
        with transaction.atomic():
            patient, a = self._lock_assignment(assignment_id)
            if a.current_doctor_id is None or a.current_doctor_id != acting_doctor.pk:
                raise NotOwner(f'assignment {a.pk} is not held by user {acting_doctor.pk}')
            if not can_transition(a.status, AssignmentStatus.COMPLETED):
                raise InvalidStatusTransition(f'cannot complete an assignment that is {a.status}')

            now = timezone.now()
            a.status = AssignmentStatus.COMPLETED
            a.completed_at = now
            a.notes = _clean(notes)
            a.save(update_fields=['status', 'completed_at', 'notes', 'updated_at'])

            follow_up = None
            if requires_follow_up:
                follow_up = Assignment.objects.create(
                    patient=patient, hospital_id=a.hospital_id, department=a.department,
                    from_department=a.department, assigned_by=acting_doctor,
                    status=AssignmentStatus.PENDING, priority=a.priority, notes='follow-up',
                )
                patient.status = PatientStatus.ACTIVE
                patient.assigned_doctor = None
                patient.current_department = a.department
                patient.save(update_fields=['status', 'assigned_doctor', 'current_department', 'updated_at'])
            else:
                self._discharge(patient, now)
            self.audit.record(user=acting_doctor, action='assignment_complete', obj=a,
                              detail={'followUp': bool(requires_follow_up),
                                      'followUpId': str(follow_up.pk) if follow_up else None})

        logger.info("assignment %s completed by doctor %s (follow_up=%s)", a.pk, acting_doctor.pk, requires_follow_up)
        if not requires_follow_up:
            self._announce_discharge(patient, acting_doctor)
        return a

    @log_rejections(logger)
    def set_priority(self, assignment_id, priority, acting_user) -> Assignment:
        prio = coerce_priority(priority)
        with transaction.atomic():
            _, a = self._lock_assignment(assignment_id)
            if not a.is_open:
                raise InvalidStatusTransition(f'cannot reprioritise an assignment that is {a.status}')
            if not self._may_act_in(acting_user, a):
                raise NotAuthorizedForDepartment(f'user {acting_user.pk} cannot modify {a.department} assignments')
            if a.priority != prio:
                old = a.priority
                a.priority = prio
                a.save(update_fields=['priority', 'updated_at'])
                self.audit.record(user=acting_user, action='assignment_priority', obj=a,
                                  detail={'from': old, 'to': int(prio)})
                logger.info("assignment %s priority %s -> %s", a.pk, old, int(prio))
        return a

    # ------------------------------------------------------------------
    # transfers
    # ------------------------------------------------------------------

    @log_rejections(logger)
    def transfer_patient(self, hospital, patient_id, from_department, to_department, reason: str,
                         acting_user) -> Assignment:
        source = coerce_department(from_department)
        target = coerce_department(to_department)
        self._check_hospital(acting_user, hospital, WrongActingDepartment)
        if acting_user.department != source:
            raise WrongActingDepartment(f'user {acting_user.pk} is not assigned to {source}')

        with transaction.atomic():
            patient = self._lock_patient(patient_id, hospital)
            if patient.current_department != source:
                raise LocationMismatch(
                    f'patient is currently in {patient.current_department}, not {source}; cannot initiate transfer'
                )
            if source == target:
                raise SameDepartment(f'patient is already in {target}')
            dept = Department.objects.filter(hospital=hospital, name=target, is_operational=True).first()
            if dept is None:
                raise TargetNotOperational(f'{target} not found or not operational')
            if not registry.has_capacity(dept):
                raise TargetHasNoOperators(f'{target} has no active operators')

            now = timezone.now()
            prior = self._open_assignments(patient)
            prio = prior[-1].priority if prior else coerce_priority(None)
            self._supersede(prior, now)
            reason = _clean(reason)
            assignment = Assignment.objects.create(
                patient=patient, hospital=hospital, department=target,
                from_department=source, to_department=target, assigned_by=acting_user,
                status=AssignmentStatus.TRANSFER_PENDING, priority=prio, notes=reason,
                transfer_history=[{
                    'fromDepartment': source,
                    'toDepartment': target,
                    'transferredBy': acting_user.pk,
                    'transferredAt': now.isoformat(),
                    'notes': reason,
                }],
            )
            patient.current_department = target
            patient.status = PatientStatus.TRANSFERRED
            patient.assigned_doctor = None
            patient.save(update_fields=['current_department', 'status', 'assigned_doctor', 'updated_at'])
            self.audit.record(user=acting_user, action='patient_transfer', obj=assignment,
                              detail={'from': source, 'to': target, 'patientId': str(patient.pk)})

        logger.info("patient %s transfer %s -> %s initiated by user %s", patient.pk, source, target, acting_user.pk)
        payload = PatientTransferPayload(patient_id=str(patient.pk), assignment_id=str(assignment.pk),
                                         from_department=source, to_department=target, reason=reason,
                                         stage='requested')
        self.notifier.notify_department(
            hospital, target, sender=acting_user,
            roles=conf.transfer_notify_roles(), fallback_to_department=True,
            message=f"Patient {patient.full_name} is being transferred from "
                    f"{DepartmentName(source).label} to {DepartmentName(target).label}",
            type=NotificationType.PATIENT_TRANSFER, payload=payload,
        )
        return assignment

    @log_rejections(logger)
    def accept_transfer(self, assignment_id, accepting_user) -> Assignment:
        with transaction.atomic():
            patient, a = self._lock_assignment(assignment_id)
            if accepting_user.department != a.to_department or accepting_user.hospital_id != a.hospital_id:
                raise WrongDepartment(f'user {accepting_user.pk} is not assigned to {a.to_department}')
            if a.status != AssignmentStatus.TRANSFER_PENDING:
                raise InvalidStatusTransition(f'cannot accept an assignment that is {a.status}')

            a.status = AssignmentStatus.ACTIVE
            a.assigned_to = accepting_user
            a.accepted_at = timezone.now()
            a.save(update_fields=['status', 'assigned_to', 'accepted_at', 'updated_at'])
            patient.status = PatientStatus.ACTIVE
            patient.assigned_doctor = accepting_user if accepting_user.role == Role.DOCTOR else None
            patient.save(update_fields=['status', 'assigned_doctor', 'updated_at'])
            self.audit.record(user=accepting_user, action='transfer_accept', obj=a,
                              detail={'patientId': str(patient.pk)})

        logger.info("transfer %s accepted by user %s", a.pk, accepting_user.pk)
        self.notifier.notify(
            [a.assigned_by_id], sender=accepting_user,
            message=f"Transfer of {patient.full_name} to {a.get_to_department_display()} was accepted",
            type=NotificationType.PATIENT_TRANSFER,
            payload=PatientTransferPayload(patient_id=str(patient.pk), assignment_id=str(a.pk),
                                           from_department=a.from_department, to_department=a.to_department,
                                           reason=a.notes, stage='accepted'),
        )
        return a

    @log_rejections(logger)
    def get_pending_transfers(self, department, hospital=None, acting_user=None):
        return queue.get_pending_transfers(department, hospital, acting_user=acting_user)

    @log_rejections(logger)
    def get_queue(self, department, hospital, acting_user=None):
        return queue.get_queue(department, hospital, acting_user=acting_user)

    # ------------------------------------------------------------------
    # discharge
    # ------------------------------------------------------------------

    def _discharge(self, patient: Patient, now) -> int:
        """Close every open assignment and mark the patient DISCHARGED.  Caller holds the patient lock."""
        closed = Assignment.objects.filter(patient=patient, status__in=OPEN_ASSIGNMENT_STATUSES).update(
            status=AssignmentStatus.COMPLETED, completed_at=now, updated_at=now,
        )
        patient.status = PatientStatus.DISCHARGED
        patient.current_department = None
        patient.assigned_doctor = None
        patient.save(update_fields=['status', 'current_department', 'assigned_doctor', 'updated_at'])
        return closed

    def _announce_discharge(self, patient: Patient, actor) -> None:
        self.notifier.notify_hospital(
            patient.hospital, sender=actor,
            message=f"Patient {patient.full_name} has been discharged",
            type=NotificationType.DEPARTMENT_ALERT,
            payload=DepartmentAlertPayload(patient_id=str(patient.pk), department=None, event='discharged'),
        )

    @log_rejections(logger)
    def complete_patient_journey(self, patient_id, billing_details: Optional[dict],
                                 acting_user) -> Tuple[Patient, Optional[BillingRecord]]:
        details = None
        if billing_details:
            s = BillingDetailsSerializer(data=billing_details)
            s.is_valid(raise_exception=True)
            details = s.validated_data

        hospital = None if acting_user.role == Role.SUPER_ADMIN else acting_user.hospital_id
        with transaction.atomic():
            patient = self._lock_patient(patient_id, hospital)
            if patient.status in TERMINAL_PATIENT_STATUSES:
                raise AlreadyDischarged(f'patient {patient.pk} is already {patient.status}')
            at_final_stage = patient.current_department in conf.discharge_departments()
            if not at_final_stage and acting_user.role not in conf.discharge_roles():
                raise NotEligibleForDischarge(
                    f'patient is in {patient.current_department}; only '
                    f'{", ".join(sorted(conf.discharge_departments()))} may discharge'
                )

            closed = self._discharge(patient, timezone.now())
            bill = None
            if details is not None:
                bill = self.billing.create_invoice(
                    patient=patient, hospital=patient.hospital, billed_by=acting_user,
                    line_items=[dict(i) for i in details['items']], tax=details['tax'],
                    discount=details['discount'], amount_paid=details['amount_paid'],
                    payment_method=details.get('payment_method'), notes=details.get('notes', ''),
                )
            self.audit.record(user=acting_user, action='patient_discharge', obj=patient,
                              detail={'closedAssignments': closed, 'billingId': str(bill.pk) if bill else None})

        logger.info("patient %s discharged by user %s (%d assignments closed)", patient.pk, acting_user.pk, closed)
        self._announce_discharge(patient, acting_user)
        if bill is not None:
            self.notifier.notify_department(
                patient.hospital, DepartmentName.BILLING, sender=acting_user,
                message=f"Invoice raised for {patient.full_name}: {bill.total_amount}",
                type=NotificationType.BILLING_UPDATE,
                payload=BillingUpdatePayload(patient_id=str(patient.pk), billing_id=str(bill.pk),
                                             total_amount=str(bill.total_amount)),
            )
        return patient, bill
