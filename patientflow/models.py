"""
Database models for the patient-flow core.

Hospitals own departments, staff and patients.  A patient's movement
through the hospital is recorded in the :class:`Assignment` ledger, while
:class:`Patient` keeps the current location and journey status.
Notifications, billing records and audit events are independent
collections cross-referenced by identifier.
"""
from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils import timezone

from .enums import (
    AssignmentStatus,
    BillingStatus,
    BloodType,
    DepartmentCategory,
    DepartmentName,
    Gender,
    NotificationType,
    OPEN_ASSIGNMENT_STATUSES,
    PatientStatus,
    PaymentMethod,
    Priority,
    Role,
)


class Hospital(models.Model):
    name = models.CharField(max_length=255, unique=True)
    address = models.CharField(max_length=255, blank=True)
    county = models.CharField(max_length=100, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.name


class User(AbstractUser):
    """Staff (and patient portal) account.

    ``department`` is the department the user currently works in; the
    flow engine compares it against assignment departments when
    authorising transfers and doctor pickups.
    """
    role = models.CharField(max_length=32, choices=Role.choices, default=Role.PATIENT, db_index=True)
    hospital = models.ForeignKey(
        Hospital, null=True, blank=True, on_delete=models.SET_NULL, related_name='staff'
    )
    department = models.CharField(
        max_length=32, choices=DepartmentName.choices, null=True, blank=True, db_index=True
    )

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Department(models.Model):
    """A department of one hospital with its operator roster."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    hospital = models.ForeignKey(Hospital, on_delete=models.CASCADE, related_name='departments')
    name = models.CharField(max_length=32, choices=DepartmentName.choices)
    category = models.CharField(max_length=20, choices=DepartmentCategory.choices)
    operator_roles = models.JSONField(default=list, blank=True)
    operators = models.ManyToManyField(User, blank=True, related_name='operated_departments')
    min_operators = models.PositiveIntegerField(default=1)
    head_of_department = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='headed_departments'
    )
    available_beds = models.PositiveIntegerField(default=0)
    # departments are deactivated, never deleted
    is_operational = models.BooleanField(default=True, db_index=True)
    location = models.CharField(max_length=255, blank=True)
    phone_extension = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['hospital', 'name'], name='uniq_department_per_hospital'),
        ]

    def __str__(self) -> str:
        return f"{self.name} @ {self.hospital_id}"

    def operator_count(self) -> int:
        return self.operators.count()

    def permits(self, role: str) -> bool:
        return role in (self.operator_roles or [])


class Patient(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    hospital = models.ForeignKey(Hospital, on_delete=models.CASCADE, related_name='patients')

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=20, choices=Gender.choices, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    national_id = models.CharField(max_length=64, blank=True)
    blood_type = models.CharField(max_length=8, choices=BloodType.choices, blank=True)

    # null means the patient is not located anywhere (e.g. discharged)
    current_department = models.CharField(
        max_length=32, choices=DepartmentName.choices, null=True, blank=True, db_index=True
    )
    status = models.CharField(
        max_length=20, choices=PatientStatus.choices, default=PatientStatus.REGISTERED, db_index=True
    )
    assigned_doctor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='patients_assigned'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=['hospital', 'status'], name='patient_hospital_status_idx')]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.id})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def open_assignments(self):
        return self.assignments.filter(status__in=OPEN_ASSIGNMENT_STATUSES)


class Assignment(models.Model):
    """Ledger entry placing a patient in a department."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='assignments')
    hospital = models.ForeignKey(Hospital, on_delete=models.CASCADE, related_name='assignments')
    department = models.CharField(max_length=32, choices=DepartmentName.choices, db_index=True)
    from_department = models.CharField(max_length=32, choices=DepartmentName.choices, null=True, blank=True)
    to_department = models.CharField(
        max_length=32, choices=DepartmentName.choices, null=True, blank=True, db_index=True
    )
    assigned_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='assignments_created')
    assigned_to = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='assignments_accepted'
    )
    current_doctor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='assignments_held'
    )
    status = models.CharField(
        max_length=20, choices=AssignmentStatus.choices, default=AssignmentStatus.PENDING, db_index=True
    )
    priority = models.PositiveSmallIntegerField(choices=Priority.choices, default=Priority.MEDIUM)
    notes = models.TextField(blank=True)
    transfer_history = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    assigned_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['hospital', 'department', 'status'], name='assignment_dept_status_idx'),
            models.Index(fields=['patient', 'status'], name='assignment_patient_status_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.patient_id} -> {self.department} [{self.status}]"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ASSIGNMENT_STATUSES


class Notification(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    recipient = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    sender = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='notifications_sent'
    )
    message = models.TextField()
    type = models.CharField(max_length=20, choices=NotificationType.choices)
    payload = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    delivery_attempts = models.PositiveSmallIntegerField(default=0)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        indexes = [
            models.Index(fields=['recipient', 'is_read'], name='notification_unread_idx'),
            models.Index(fields=['-created_at'], name='notification_created_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.type} -> {self.recipient_id}"

    def parsed_payload(self):
        from .payloads import parse_payload
        return parse_payload(self.type, self.payload)


class BillingRecord(models.Model):
    """Invoice raised at discharge.

    Derived amounts are computed by :meth:`build`; there is no save hook
    recalculating them behind the caller's back.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='billing_records')
    hospital = models.ForeignKey(Hospital, on_delete=models.CASCADE, related_name='billing_records')
    billed_by = models.ForeignKey(User, null=True, on_delete=models.SET_NULL, related_name='billing_records')
    items = models.JSONField(default=list, blank=True)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    balance = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    status = models.CharField(max_length=20, choices=BillingStatus.choices, default=BillingStatus.PENDING)
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices, blank=True)
    billing_date = models.DateTimeField(default=timezone.now)
    due_date = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    DUE_AFTER = timedelta(days=14)

    class Meta:
        indexes = [
            models.Index(fields=['patient', 'status'], name='billing_patient_status_idx'),
            models.Index(fields=['hospital', '-billing_date'], name='billing_hospital_date_idx'),
        ]

    def __str__(self) -> str:
        return f"bill {self.id} patient={self.patient_id} total={self.total_amount}"

    @classmethod
    def build(cls, *, patient, hospital, billed_by, items, tax=Decimal('0'), discount=Decimal('0'),
              amount_paid=Decimal('0'), payment_method='', notes='') -> 'BillingRecord':
        """Return an unsaved record with subtotal, total, balance and status computed."""
        subtotal = sum(
            (Decimal(i['unitPrice']) * int(i.get('quantity', 1)) - Decimal(i.get('discount', 0)) for i in items),
            Decimal('0'),
        )
        total = max(subtotal + Decimal(tax) - Decimal(discount), Decimal('0'))
        paid = Decimal(amount_paid)
        balance = total - paid
        if paid <= 0:
            status = BillingStatus.PENDING
        elif balance > 0:
            status = BillingStatus.PARTIALLY_PAID
        else:
            status = BillingStatus.PAID
        now = timezone.now()
        return cls(
            patient=patient, hospital=hospital, billed_by=billed_by, items=items,
            subtotal=subtotal, tax=Decimal(tax), discount=Decimal(discount),
            total_amount=total, amount_paid=paid, balance=balance, status=status,
            payment_method=payment_method or '', billing_date=now, due_date=now + cls.DUE_AFTER,
            notes=notes or '',
        )


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.CharField(max_length=64, blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_idx'),
        ]

    def __str__(self):
        return f"{self.action}:{self.object_type}:{self.object_id}"
