from app.staff.models import Department, Role, Staff, StaffRole, User

__all__ = [
    "User",
    "Department",
    "Role",
    "Staff",
    "StaffRole",
]
