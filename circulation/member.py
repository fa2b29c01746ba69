from __future__ import annotations

from datetime import date


class Member:
    """A registered library member. Only existence and ``is_active`` matter to loans."""

    def __init__(self, name: str, email: str = "", phone: str = "", is_active: bool = True,
                 id: int | None = None, created_at: date | str | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.email = (email or "").strip()
        self.phone = (phone or "").strip()
        self.is_active = bool(is_active)
        if isinstance(created_at, str):
            created_at = date.fromisoformat(created_at[:10])
        self.created_at = created_at or date.today()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
        }

    @staticmethod
    def from_dict(data: dict) -> "Member":
        return Member(
            id=data.get("id"),
            name=data["name"],
            email=data.get("email") or "",
            phone=data.get("phone") or "",
            is_active=bool(data.get("is_active", 1)),
            created_at=data.get("created_at"),
        )
