"""
Shared enumerations for the patient-flow app.

Department names are defined here exactly once and referenced by the
department, patient, assignment and user models alike.  Every other
module validates department names through :func:`coerce_department`.
"""
from __future__ import annotations

from django.db import models


class DepartmentName(models.TextChoices):
    # Patient flow
    RECEPTION = 'RECEPTION', 'Reception'
    TRIAGE = 'TRIAGE', 'Triage'
    REGISTRATION = 'REGISTRATION', 'Registration'
    ADMISSIONS = 'ADMISSIONS', 'Admissions'

    # Clinical
    EMERGENCY = 'EMERGENCY', 'Emergency'
    OUTPATIENT = 'OUTPATIENT', 'Outpatient'
    INPATIENT = 'INPATIENT', 'Inpatient'
    INTENSIVE_CARE_UNIT = 'INTENSIVE_CARE_UNIT', 'Intensive care unit'
    CARDIOLOGY = 'CARDIOLOGY', 'Cardiology'
    NEUROLOGY = 'NEUROLOGY', 'Neurology'
    ORTHOPEDICS = 'ORTHOPEDICS', 'Orthopedics'
    PEDIATRICS = 'PEDIATRICS', 'Pediatrics'
    MATERNITY = 'MATERNITY', 'Maternity'
    ONCOLOGY = 'ONCOLOGY', 'Oncology'
    PSYCHIATRY = 'PSYCHIATRY', 'Psychiatry'
    DERMATOLOGY = 'DERMATOLOGY', 'Dermatology'
    OPHTHALMOLOGY = 'OPHTHALMOLOGY', 'Ophthalmology'
    ENT = 'ENT', 'ENT'
    UROLOGY = 'UROLOGY', 'Urology'
    GASTROENTEROLOGY = 'GASTROENTEROLOGY', 'Gastroenterology'
    ENDOCRINOLOGY = 'ENDOCRINOLOGY', 'Endocrinology'
    PULMONOLOGY = 'PULMONOLOGY', 'Pulmonology'
    NEPHROLOGY = 'NEPHROLOGY', 'Nephrology'
    RHEUMATOLOGY = 'RHEUMATOLOGY', 'Rheumatology'

    # Diagnostic
    LABORATORY = 'LABORATORY', 'Laboratory'
    RADIOLOGY = 'RADIOLOGY', 'Radiology'
    MRI_SCAN = 'MRI_SCAN', 'MRI scan'
    CT_SCAN = 'CT_SCAN', 'CT scan'
    ULTRASOUND = 'ULTRASOUND', 'Ultrasound'
    PHYSIOTHERAPY = 'PHYSIOTHERAPY', 'Physiotherapy'
    CARDIAC_CATH_LAB = 'CARDIAC_CATH_LAB', 'Cardiac cath lab'
    ELECTROCARDIOGRAM = 'ELECTROCARDIOGRAM', 'Electrocardiogram'
    ELECTROENCEPHALOGRAM = 'ELECTROENCEPHALOGRAM', 'Electroencephalogram'
    ENDOSCOPY = 'ENDOSCOPY', 'Endoscopy'

    # Treatment
    OPERATING_THEATER = 'OPERATING_THEATER', 'Operating theater'
    RECOVERY_ROOM = 'RECOVERY_ROOM', 'Recovery room'
    DAY_SURGERY = 'DAY_SURGERY', 'Day surgery'
    CHEMOTHERAPY = 'CHEMOTHERAPY', 'Chemotherapy'
    RADIATION_ONCOLOGY = 'RADIATION_ONCOLOGY', 'Radiation oncology'
    DIALYSIS_UNIT = 'DIALYSIS_UNIT', 'Dialysis unit'
    BURN_UNIT = 'BURN_UNIT', 'Burn unit'
    PAIN_MANAGEMENT = 'PAIN_MANAGEMENT', 'Pain management'

    # Support
    PHARMACY = 'PHARMACY', 'Pharmacy'
    NUTRITION = 'NUTRITION', 'Nutrition'
    MEDICAL_RECORDS = 'MEDICAL_RECORDS', 'Medical records'
    CENTRAL_STERILE_SUPPLY = 'CENTRAL_STERILE_SUPPLY', 'Central sterile supply'
    BIOMEDICAL_ENGINEERING = 'BIOMEDICAL_ENGINEERING', 'Biomedical engineering'
    HOUSEKEEPING = 'HOUSEKEEPING', 'Housekeeping'
    SECURITY = 'SECURITY', 'Security'

    # Administrative
    BILLING = 'BILLING', 'Billing'
    HUMAN_RESOURCES = 'HUMAN_RESOURCES', 'Human resources'
    ADMINISTRATION = 'ADMINISTRATION', 'Administration'
    MARKETING = 'MARKETING', 'Marketing'
    INFORMATION_TECHNOLOGY = 'INFORMATION_TECHNOLOGY', 'Information technology'
    QUALITY_ASSURANCE = 'QUALITY_ASSURANCE', 'Quality assurance'

    # Specialized units
    DENTAL = 'DENTAL', 'Dental'
    DIABETES_CLINIC = 'DIABETES_CLINIC', 'Diabetes clinic'
    ALLERGY_CLINIC = 'ALLERGY_CLINIC', 'Allergy clinic'
    SPORTS_MEDICINE = 'SPORTS_MEDICINE', 'Sports medicine'
    REHABILITATION = 'REHABILITATION', 'Rehabilitation'
    PALLIATIVE_CARE = 'PALLIATIVE_CARE', 'Palliative care'
    SLEEP_CLINIC = 'SLEEP_CLINIC', 'Sleep clinic'
    INFECTIOUS_DISEASE = 'INFECTIOUS_DISEASE', 'Infectious disease'
    GENETICS_CLINIC = 'GENETICS_CLINIC', 'Genetics clinic'


class DepartmentCategory(models.TextChoices):
    PATIENT_FLOW = 'PATIENT_FLOW', 'Patient flow'
    CLINICAL = 'CLINICAL', 'Clinical'
    DIAGNOSTIC = 'DIAGNOSTIC', 'Diagnostic'
    TREATMENT = 'TREATMENT', 'Treatment'
    SUPPORT = 'SUPPORT', 'Support'
    ADMINISTRATIVE = 'ADMINISTRATIVE', 'Administrative'
    SPECIALIZED = 'SPECIALIZED', 'Specialized'


class Role(models.TextChoices):
    PATIENT = 'patient', 'Patient'
    DOCTOR = 'doctor', 'Doctor'
    HOSPITAL_ADMIN = 'hospital-admin', 'Hospital administrator'
    SUPER_ADMIN = 'super-admin', 'Super administrator'
    LAB_TECHNICIAN = 'lab-technician', 'Lab technician'
    PHARMACIST = 'pharmacist', 'Pharmacist'
    RECEPTIONIST = 'receptionist', 'Receptionist'
    NURSE = 'nurse', 'Nurse'
    RADIOLOGIST = 'radiologist', 'Radiologist'
    PHYSIOTHERAPIST = 'physiotherapist', 'Physiotherapist'
    DIETITIAN = 'dietitian', 'Dietitian'
    DEPARTMENT_OPERATOR = 'department-operator', 'Department operator'


# Roles that may be placed on a department roster at all.
OPERATOR_ROLES = frozenset({
    Role.DOCTOR, Role.LAB_TECHNICIAN, Role.PHARMACIST, Role.RECEPTIONIST,
    Role.NURSE, Role.RADIOLOGIST, Role.DEPARTMENT_OPERATOR,
})

ADMIN_ROLES = frozenset({Role.HOSPITAL_ADMIN, Role.SUPER_ADMIN})

# Permitted roster roles for departments seeded at hospital onboarding.
DEFAULT_OPERATOR_ROLES = {
    DepartmentCategory.PATIENT_FLOW: [Role.RECEPTIONIST, Role.NURSE, Role.DEPARTMENT_OPERATOR],
    DepartmentCategory.CLINICAL: [Role.DOCTOR, Role.NURSE],
    DepartmentCategory.DIAGNOSTIC: [Role.LAB_TECHNICIAN, Role.RADIOLOGIST, Role.DOCTOR],
    DepartmentCategory.TREATMENT: [Role.DOCTOR, Role.NURSE],
    DepartmentCategory.SUPPORT: [Role.PHARMACIST, Role.DEPARTMENT_OPERATOR],
    DepartmentCategory.ADMINISTRATIVE: [Role.DEPARTMENT_OPERATOR, Role.RECEPTIONIST],
    DepartmentCategory.SPECIALIZED: [Role.DOCTOR, Role.NURSE],
}

CORE_DEPARTMENTS = [
    (DepartmentName.RECEPTION, DepartmentCategory.PATIENT_FLOW),
    (DepartmentName.TRIAGE, DepartmentCategory.PATIENT_FLOW),
    (DepartmentName.REGISTRATION, DepartmentCategory.PATIENT_FLOW),
    (DepartmentName.EMERGENCY, DepartmentCategory.CLINICAL),
    (DepartmentName.OUTPATIENT, DepartmentCategory.CLINICAL),
    (DepartmentName.LABORATORY, DepartmentCategory.DIAGNOSTIC),
    (DepartmentName.RADIOLOGY, DepartmentCategory.DIAGNOSTIC),
    (DepartmentName.PHARMACY, DepartmentCategory.SUPPORT),
    (DepartmentName.BILLING, DepartmentCategory.ADMINISTRATIVE),
    (DepartmentName.MEDICAL_RECORDS, DepartmentCategory.ADMINISTRATIVE),
]


class PatientStatus(models.TextChoices):
    REGISTERED = 'REGISTERED', 'Registered'
    ACTIVE = 'ACTIVE', 'Active'
    IN_TREATMENT = 'IN_TREATMENT', 'In treatment'
    DISCHARGED = 'DISCHARGED', 'Discharged'
    TRANSFERRED = 'TRANSFERRED', 'Transferred'
    DECEASED = 'DECEASED', 'Deceased'


TERMINAL_PATIENT_STATUSES = frozenset({PatientStatus.DISCHARGED, PatientStatus.DECEASED})


class AssignmentStatus(models.TextChoices):
    PENDING = 'PENDING', 'Pending'
    IN_PROGRESS = 'IN_PROGRESS', 'In progress'
    TRANSFER_PENDING = 'TRANSFER_PENDING', 'Transfer pending'
    ACTIVE = 'ACTIVE', 'Active'
    COMPLETED = 'COMPLETED', 'Completed'
    TRANSFERRED = 'TRANSFERRED', 'Transferred'


OPEN_ASSIGNMENT_STATUSES = (
    AssignmentStatus.PENDING,
    AssignmentStatus.IN_PROGRESS,
    AssignmentStatus.TRANSFER_PENDING,
    AssignmentStatus.ACTIVE,
)

QUEUE_STATUSES = (AssignmentStatus.PENDING, AssignmentStatus.IN_PROGRESS)

ASSIGNMENT_TRANSITIONS = {
    AssignmentStatus.PENDING: {
        AssignmentStatus.IN_PROGRESS, AssignmentStatus.COMPLETED, AssignmentStatus.TRANSFERRED,
    },
    AssignmentStatus.IN_PROGRESS: {AssignmentStatus.COMPLETED, AssignmentStatus.TRANSFERRED},
    AssignmentStatus.TRANSFER_PENDING: {
        AssignmentStatus.ACTIVE, AssignmentStatus.COMPLETED, AssignmentStatus.TRANSFERRED,
    },
    AssignmentStatus.ACTIVE: {
        AssignmentStatus.IN_PROGRESS, AssignmentStatus.COMPLETED, AssignmentStatus.TRANSFERRED,
    },
    AssignmentStatus.COMPLETED: set(),
    AssignmentStatus.TRANSFERRED: set(),
}


def can_transition(current: str, new: str) -> bool:
    """Return True if an assignment may move from ``current`` to ``new``."""
    return new in ASSIGNMENT_TRANSITIONS.get(current, set())


class Priority(models.IntegerChoices):
    LOW = 1, 'Low'
    MEDIUM = 2, 'Medium'
    HIGH = 3, 'High'
    CRITICAL = 4, 'Critical'


class NotificationType(models.TextChoices):
    DEPARTMENT_ALERT = 'DEPARTMENT_ALERT', 'Department alert'
    PATIENT_TRANSFER = 'PATIENT_TRANSFER', 'Patient transfer'
    CRITICAL_RESULT = 'CRITICAL_RESULT', 'Critical result'
    NEW_ASSIGNMENT = 'NEW_ASSIGNMENT', 'New assignment'
    BILLING_UPDATE = 'BILLING_UPDATE', 'Billing update'


class Gender(models.TextChoices):
    MALE = 'Male', 'Male'
    FEMALE = 'Female', 'Female'
    OTHER = 'Other', 'Other'
    UNDISCLOSED = 'Prefer not to say', 'Prefer not to say'


class BloodType(models.TextChoices):
    A_POS = 'A+', 'A+'
    A_NEG = 'A-', 'A-'
    B_POS = 'B+', 'B+'
    B_NEG = 'B-', 'B-'
    AB_POS = 'AB+', 'AB+'
    AB_NEG = 'AB-', 'AB-'
    O_POS = 'O+', 'O+'
    O_NEG = 'O-', 'O-'
    UNKNOWN = 'Unknown', 'Unknown'


class BillingStatus(models.TextChoices):
    DRAFT = 'DRAFT', 'Draft'
    PENDING = 'PENDING', 'Pending'
    PARTIALLY_PAID = 'PARTIALLY_PAID', 'Partially paid'
    PAID = 'PAID', 'Paid'
    CANCELLED = 'CANCELLED', 'Cancelled'
    REFUNDED = 'REFUNDED', 'Refunded'


class BillingCategory(models.TextChoices):
    CONSULTATION = 'CONSULTATION', 'Consultation'
    LAB_TEST = 'LAB_TEST', 'Lab test'
    PROCEDURE = 'PROCEDURE', 'Procedure'
    MEDICATION = 'MEDICATION', 'Medication'
    BED_CHARGES = 'BED_CHARGES', 'Bed charges'


class PaymentMethod(models.TextChoices):
    CASH = 'CASH', 'Cash'
    MPESA = 'MPESA', 'M-Pesa'
    CARD = 'CARD', 'Card'
    INSURANCE = 'INSURANCE', 'Insurance'
    BANK_TRANSFER = 'BANK_TRANSFER', 'Bank transfer'


def coerce_department(value) -> DepartmentName:
    """Return ``value`` as a :class:`DepartmentName` or raise InvalidDepartmentName."""
    from .exceptions import InvalidDepartmentName

    if isinstance(value, DepartmentName):
        return value
    try:
        return DepartmentName(str(value or '').strip().upper())
    except ValueError:
        raise InvalidDepartmentName(f'unknown department name: {value!r}') from None
