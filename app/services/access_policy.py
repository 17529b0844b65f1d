# app/services/access_policy.py
"""
Single place where role → capability is decided.
Every mutating entry point asks the policy first instead of checking "is admin" inline.

Modes:
  roles         admin may list/create/update/delete; viewer may only verify one record at a time
  single_admin  any authenticated session has full rights
"""

from typing import Optional, Sequence
from app.schemas.session import Role

ROLES_MODE = "roles"
SINGLE_ADMIN_MODE = "single_admin"


class AccessPolicy:
    def __init__(self, mode: str = ROLES_MODE):
        if mode not in (ROLES_MODE, SINGLE_ADMIN_MODE):
            raise ValueError(f"Unknown access mode: {mode}")
        self.mode = mode

    def can_write(self, role: Optional[Role]) -> bool:
        if role is None:
            return False
        if self.mode == SINGLE_ADMIN_MODE:
            return True
        return role == Role.ADMIN

    def can_list(self, role: Optional[Role]) -> bool:
        # Listing follows write access: a viewer never gets the table
        return self.can_write(role)

    def can_read(self, role: Optional[Role], records: Sequence) -> list:
        """Filtered view of records for this role."""
        return list(records) if self.can_list(role) else []
