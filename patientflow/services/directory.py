"""Read-only staff lookups used by the registry and the flow engine."""
from dataclasses import dataclass
from typing import Iterable, List, Optional

from django.contrib.auth import get_user_model

from patientflow.exceptions import UserNotFound

User = get_user_model()


@dataclass(frozen=True)
class StaffInfo:
    id: int
    role: str
    department: Optional[str]
    hospital_id: Optional[int]


class UserDirectory:

    def find_users_by_department(self, hospital, department: str, roles: Optional[Iterable[str]] = None) -> List[int]:
        qs = User.objects.filter(hospital=hospital, department=department, is_active=True)
        if roles:
            qs = qs.filter(role__in=list(roles))
        return list(qs.order_by('id').values_list('id', flat=True))

    def find_users_by_hospital(self, hospital, roles: Optional[Iterable[str]] = None) -> List[int]:
        qs = User.objects.filter(hospital=hospital, is_active=True)
        if roles:
            qs = qs.filter(role__in=list(roles))
        return list(qs.order_by('id').values_list('id', flat=True))

    def get_user(self, user_id) -> StaffInfo:
        u = User.objects.filter(pk=user_id).only('id', 'role', 'department', 'hospital_id').first()
        if u is None:
            raise UserNotFound(f'user {user_id} not found')
        return StaffInfo(id=u.id, role=u.role, department=u.department, hospital_id=u.hospital_id)
