"""Member registration for the loan desk.

Member records are maintained elsewhere; this only covers what a desk needs
to seed and suspend borrowers.
"""
from __future__ import annotations

import logging
from typing import List

from circulation.errors import DataAccessError, NotFoundError
from circulation.member import Member
from circulation.service import BaseService
from circulation.stores import MemberDirectory

logger = logging.getLogger(__name__)


class MemberService(BaseService):

    def add_member(self, name: str, email: str = "", phone: str = "") -> Member:
        member = Member(name=name, email=email, phone=phone, created_at=self.today())
        if not member.name:
            raise ValueError("Member name cannot be empty.")
        with self.transaction("creating member") as conn:
            MemberDirectory(conn).save(member)
        logger.info(f"Member created - ID: {member.id}")
        return member

    def find_member(self, member_id: int) -> Member:
        with self.reading("finding member") as conn:
            member = MemberDirectory(conn).find(member_id)
        if member is None:
            raise NotFoundError(f"Member not found with ID: {member_id}")
        return member

    def list_members(self) -> List[Member]:
        with self.reading("listing members") as conn:
            return MemberDirectory(conn).find_all()

    def set_member_active(self, member_id: int, is_active: bool) -> Member:
        with self.transaction("updating member") as conn:
            directory = MemberDirectory(conn)
            member = directory.find(member_id)
            if member is None:
                raise NotFoundError(f"Member not found with ID: {member_id}")
            if not directory.set_active(member_id, is_active):
                raise DataAccessError("Failed to update member, no rows affected")
            member.is_active = is_active
        logger.info(f"Member {member_id} {'activated' if is_active else 'deactivated'}")
        return member
