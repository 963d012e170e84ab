"""Append-only audit trail for staff actions that are not status transitions."""
from typing import Optional, Any, Dict, List
from django.contrib.auth import get_user_model
from dispatch.models import AuditEvent

User = get_user_model()


def client_ip(request) -> Optional[str]:
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def log_action(*, user: Optional[User], action: str, object_type: Optional[str]=None, object_id: Optional[int]=None, detail: Optional[Dict[str, Any]]=None) -> AuditEvent:
    return AuditEvent.objects.create(
        user=user if isinstance(user, User) else None,
        action=action,
        object_type=object_type, object_id=object_id,
        detail=detail or {},
    )


def trail_for(object_type: str, object_id: int, limit: int = 50) -> List[Dict[str, Any]]:
    """Newest-first audit entries for one object."""
    events = (AuditEvent.objects.filter(object_type=object_type, object_id=object_id)
              .select_related('user').order_by('-created_at', '-id')[:limit])
    return [{
        'action': e.action,
        'userId': e.user_id,
        'username': e.user.username if e.user else None,
        'detail': e.detail,
        'createdAt': e.created_at.isoformat(),
    } for e in events]
