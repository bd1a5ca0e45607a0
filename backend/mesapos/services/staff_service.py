# Overview: Staff checks used when a sale is opened or reassigned.

from __future__ import annotations

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Staff


def ensure_staff_for_branch(branch_id: int, staff_id: int | None) -> Staff | None:
    """
    Staff member allowed to take sales on the branch; None passes through.

    Raises NotFound for an unknown id, ValidationError for inactive staff or
    staff of another branch.
    """
    if staff_id is None:
        return None
    staff = db.session.get(Staff, staff_id)
    if staff is None:
        raise NotFound("Staff member not found", details={"staff_id": staff_id})
    if not staff.is_active:
        raise ValidationError("Staff member is inactive", details={"staff_id": staff_id})
    if staff.branch_id != branch_id:
        raise ValidationError(
            "Staff member belongs to another branch",
            details={"staff_id": staff_id, "branch_id": branch_id},
        )
    return staff
