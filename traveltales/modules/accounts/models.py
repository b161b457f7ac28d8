from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class Role(str, Enum):
    """Account role; resolved server-side on every request."""

    USER = "user"
    ADMIN = "admin"


@dataclass
class Account:
    """A registered account as held by the credential store."""

    id: int
    username: str
    email: str
    password_hash: str = field(repr=False)
    first_name: str = ""
    last_name: str = ""
    verified: bool = False
    role: Role = Role.USER
    session_epoch: int = 0
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @classmethod
    def from_hash(cls, data: Dict[str, str]) -> "Account":
        """Build from a Redis hash (all values are strings)."""
        created_at = data.get("created_at")
        return cls(
            id=int(data["id"]),
            username=data["username"],
            email=data["email"],
            password_hash=data["password_hash"],
            first_name=data.get("first_name", ""),
            last_name=data.get("last_name", ""),
            verified=data.get("verified") == "1",
            role=Role(data.get("role", Role.USER.value)),
            session_epoch=int(data.get("session_epoch", "0")),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )

    def to_hash(self) -> Dict[str, str]:
        return {
            "id": str(self.id),
            "username": self.username,
            "email": self.email,
            "password_hash": self.password_hash,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "verified": "1" if self.verified else "0",
            "role": self.role.value,
            "session_epoch": str(self.session_epoch),
            "created_at": self.created_at.isoformat() if self.created_at else "",
        }

    def public_view(self) -> dict:
        """Profile fields safe to return to clients."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "verified": self.verified,
            "role": self.role.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
