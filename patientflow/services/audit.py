from typing import Optional, Any, Dict, List

from django.contrib.auth import get_user_model

from patientflow.models import AuditEvent

User = get_user_model()


class AuditLog:
    """Append-only record of flow events."""

    def record(self, *, user: Optional[User], action: str, obj=None, object_type: Optional[str] = None,
               object_id=None, detail: Optional[Dict[str, Any]] = None) -> AuditEvent:
        if obj is not None:
            object_type = object_type or obj._meta.model_name
            object_id = object_id if object_id is not None else obj.pk
        return AuditEvent.objects.create(
            user=user if isinstance(user, User) and user.pk else None,
            action=action,
            object_type=object_type,
            object_id=str(object_id) if object_id is not None else None,
            detail=detail or {},
        )

    def trail(self, object_type: str, object_id) -> List[AuditEvent]:
        return list(
            AuditEvent.objects.filter(object_type=object_type, object_id=str(object_id)).order_by('created_at', 'id')
        )
