"""Typed accessors for the ``PATIENTFLOW_*`` settings."""
from __future__ import annotations

from datetime import timedelta
from typing import FrozenSet

from django.conf import settings

from .enums import DepartmentName, Role


def discharge_departments() -> FrozenSet[str]:
    names = getattr(settings, 'PATIENTFLOW_DISCHARGE_DEPARTMENTS', [DepartmentName.PHARMACY, DepartmentName.BILLING])
    return frozenset(str(n).upper() for n in names)


def discharge_roles() -> FrozenSet[str]:
    roles = getattr(settings, 'PATIENTFLOW_DISCHARGE_ROLES', [Role.HOSPITAL_ADMIN, Role.RECEPTIONIST])
    return frozenset(str(r) for r in roles)


def transfer_notify_roles() -> FrozenSet[str]:
    roles = getattr(settings, 'PATIENTFLOW_TRANSFER_NOTIFY_ROLES', [Role.DOCTOR, Role.NURSE])
    return frozenset(str(r) for r in roles)


def notification_retry_after() -> timedelta:
    return timedelta(seconds=int(getattr(settings, 'PATIENTFLOW_NOTIFICATION_RETRY_AFTER_SECONDS', 60)))


def notification_max_attempts() -> int:
    return int(getattr(settings, 'PATIENTFLOW_NOTIFICATION_MAX_ATTEMPTS', 5))
