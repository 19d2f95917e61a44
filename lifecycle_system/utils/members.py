# lifecycle_system/utils/members.py
"""
Row-locked member loading shared by the services.
"""
from sqlalchemy.orm import Session

from lifecycle_system.errors import NotFoundError
from models.member import Member


def lock_member(session: Session, memberId: int) -> Member:
    """
    SELECT ... FOR UPDATE on the member row.

    Raises:
        NotFoundError: Unknown or retired member
    """
    member = session.query(Member).filter(
        Member.memberID == memberId
    ).with_for_update().populate_existing().first()

    if not member or member.isRetired:
        raise NotFoundError(f"Member {memberId} not found", details={"memberId": memberId})
    return member


def get_member(session: Session, memberId: int) -> Member:
    """Plain read; raises NotFoundError like lock_member."""
    member = session.query(Member).filter(Member.memberID == memberId).first()
    if not member or member.isRetired:
        raise NotFoundError(f"Member {memberId} not found", details={"memberId": memberId})
    return member
