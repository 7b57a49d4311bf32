from app.audit.models import AuditLog

__all__ = [
    "AuditLog",
]
