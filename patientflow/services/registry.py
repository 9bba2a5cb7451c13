"""
Department registry.

Departments are unique per hospital, carry the roles permitted on their
operator roster and a minimum roster size.  Every mutation locks the
department row and re-checks the staffing invariants before writing.
"""
import logging
from typing import Iterable, List, Optional, Tuple

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from patientflow.enums import (
    CORE_DEPARTMENTS,
    DEFAULT_OPERATOR_ROLES,
    OPERATOR_ROLES,
    DepartmentCategory,
    Role,
    coerce_department,
)
from patientflow.exceptions import (
    AlreadyMember,
    Conflict,
    DepartmentNotFound,
    DuplicateDepartment,
    InsufficientOperators,
    NotMember,
    PreconditionFailed,
    RoleNotPermitted,
    UserNotFound,
    log_rejections,
)
from patientflow.models import Department, Hospital
from patientflow.services.audit import AuditLog

logger = logging.getLogger(__name__)

User = get_user_model()

_audit = AuditLog()


def _pk(obj):
    return getattr(obj, 'pk', obj)


def _coerce_category(value) -> DepartmentCategory:
    try:
        return DepartmentCategory(str(value or '').strip().upper())
    except ValueError:
        raise PreconditionFailed(f'unknown department category: {value!r}') from None


def _coerce_roles(roles: Iterable[str]) -> List[str]:
    out = []
    for r in roles:
        try:
            role = Role(str(r))
        except ValueError:
            raise PreconditionFailed(f'unknown role: {r!r}') from None
        if role not in OPERATOR_ROLES:
            raise RoleNotPermitted(f'{role} cannot operate a department')
        if role not in out:
            out.append(role.value)
    return out


def _locked_department(department_id) -> Department:
    try:
        dept = Department.objects.select_for_update().filter(pk=_pk(department_id)).first()
    except DjangoValidationError:
        dept = None
    if dept is None:
        raise DepartmentNotFound(f'department {department_id} not found')
    return dept


def _get_user(user_id):
    user = User.objects.filter(pk=_pk(user_id)).first()
    if user is None:
        raise UserNotFound(f'user {user_id} not found')
    return user


@log_rejections(logger)
def create_department(hospital: Hospital, name, category, *, operator_roles: Optional[Iterable[str]] = None,
                      initial_operators: Iterable = (), min_operators: int = 1, available_beds: int = 0,
                      location: str = '', phone_extension: str = '', actor=None) -> Department:
    """Create a staffed department.

    The first listed operator becomes head of department and every
    operator's working department is set to the new one.
    """
    name = coerce_department(name)
    category = _coerce_category(category)
    roles = _coerce_roles(operator_roles if operator_roles is not None else DEFAULT_OPERATOR_ROLES[category])

    if Department.objects.filter(hospital=hospital, name=name).exists():
        raise DuplicateDepartment(f'{name} already exists in {hospital.name}')

    wanted = list(dict.fromkeys(_pk(u) for u in initial_operators))
    found = {u.pk: u for u in User.objects.filter(pk__in=wanted, hospital=hospital)}
    missing = [pk for pk in wanted if pk not in found]
    if missing:
        raise UserNotFound(f'operators not found in this hospital: {missing}')
    operators = [found[pk] for pk in wanted]
    if len(operators) < min_operators:
        raise InsufficientOperators(f'{name} needs at least {min_operators} operators, got {len(operators)}')
    for u in operators:
        if u.role not in roles:
            raise RoleNotPermitted(f'role {u.role} is not permitted in {name}')

    try:
        with transaction.atomic():
            dept = Department.objects.create(
                hospital=hospital, name=name, category=category, operator_roles=roles,
                min_operators=min_operators, available_beds=available_beds, location=location,
                phone_extension=phone_extension, head_of_department=operators[0] if operators else None,
            )
            dept.operators.set(operators)
            User.objects.filter(pk__in=wanted).update(department=name)
    except IntegrityError:
        raise DuplicateDepartment(f'{name} already exists in {hospital.name}') from None

    _audit.record(user=actor, action='department_create', obj=dept,
                  detail={'name': name, 'operators': [str(pk) for pk in wanted]})
    logger.info("department %s created in hospital %s with %d operators", name, hospital.pk, len(operators))
    return dept


@log_rejections(logger)
@transaction.atomic
def add_operator(department_id, user_id, *, actor=None) -> Department:
    dept = _locked_department(department_id)
    user = _get_user(user_id)
    if user.hospital_id != dept.hospital_id:
        raise UserNotFound(f'user {user.pk} does not belong to this hospital')
    if not dept.permits(user.role):
        raise RoleNotPermitted(f'role {user.role} is not permitted in {dept.name}')
    if dept.operators.filter(pk=user.pk).exists():
        raise AlreadyMember(f'user {user.pk} already operates {dept.name}')

    dept.operators.add(user)
    if dept.head_of_department_id is None:
        dept.head_of_department = user
        dept.save(update_fields=['head_of_department', 'updated_at'])
    user.department = dept.name
    user.save(update_fields=['department'])

    _audit.record(user=actor, action='department_add_operator', obj=dept, detail={'userId': user.pk})
    logger.info("user %s added to %s", user.pk, dept.name)
    return dept


@log_rejections(logger)
@transaction.atomic
def remove_operator(department_id, user_id, *, actor=None) -> Department:
    dept = _locked_department(department_id)
    user = _get_user(user_id)
    if not dept.operators.filter(pk=user.pk).exists():
        raise NotMember(f'user {user.pk} does not operate {dept.name}')
    if dept.operator_count() - 1 < dept.min_operators:
        raise InsufficientOperators(f'{dept.name} cannot drop below {dept.min_operators} operators')

    dept.operators.remove(user)
    if dept.head_of_department_id == user.pk:
        dept.head_of_department = dept.operators.order_by('id').first()
        dept.save(update_fields=['head_of_department', 'updated_at'])
    if user.department == dept.name:
        user.department = None
        user.save(update_fields=['department'])

    _audit.record(user=actor, action='department_remove_operator', obj=dept, detail={'userId': user.pk})
    logger.info("user %s removed from %s", user.pk, dept.name)
    return dept


@log_rejections(logger)
@transaction.atomic
def set_operational(department_id, flag: bool, *, actor=None) -> Department:
    dept = _locked_department(department_id)
    if dept.is_operational != flag:
        dept.is_operational = flag
        dept.save(update_fields=['is_operational', 'updated_at'])
        _audit.record(user=actor, action='department_set_operational', obj=dept, detail={'operational': flag})
        logger.info("department %s operational=%s", dept.name, flag)
    return dept


def has_capacity(department) -> bool:
    """True when the department has at least one operator on its roster."""
    if not isinstance(department, Department):
        department = Department.objects.filter(pk=department).first()
        if department is None:
            raise DepartmentNotFound(f'department {department} not found')
    return department.operators.exists()


def lookup(hospital, name) -> Department:
    name = coerce_department(name)
    dept = Department.objects.filter(hospital=hospital, name=name).first()
    if dept is None:
        raise DepartmentNotFound(f'{name} not found in hospital {_pk(hospital)}')
    return dept


@log_rejections(logger)
def onboard_hospital(name: str, *, address: str = '', county: str = '', phone: str = '',
                     actor=None) -> Tuple[Hospital, List[Department]]:
    """Create a hospital together with its standard department set."""
    if Hospital.objects.filter(name=name).exists():
        raise Conflict(f'hospital {name!r} already exists')
    with transaction.atomic():
        hospital = Hospital.objects.create(name=name, address=address, county=county, phone=phone)
        depts = Department.objects.bulk_create([
            Department(
                hospital=hospital, name=dname, category=cat,
                operator_roles=[r.value for r in DEFAULT_OPERATOR_ROLES[cat]], min_operators=0,
            )
            for dname, cat in CORE_DEPARTMENTS
        ])
    _audit.record(user=actor, action='hospital_onboard', obj=hospital,
                  detail={'departments': [d.name for d in depts]})
    logger.info("hospital %s onboarded with %d departments", hospital.pk, len(depts))
    return hospital, depts
