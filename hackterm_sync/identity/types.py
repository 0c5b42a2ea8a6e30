"""
Identity types.

Defines the session credentials the client keeps for "who am I" on the
backend.
"""

from dataclasses import dataclass, fields
from typing import Any


@dataclass(frozen=True)
class Session:
    """Session identity issued by the backend.

    This is the single source of truth for "am I authenticated". The
    client never edits one field in place: registration, recovery and
    logout each swap in a whole new Session, so identity fields are
    always valid or invalid together.
    """

    registered: bool = False
    handle: str = ""
    contact_id: str = ""
    recovery_code: str = ""
    session_token: str = ""

    @property
    def has_token(self) -> bool:
        """An empty token means there is no authenticated identity."""
        return bool(self.session_token)

    @classmethod
    def from_registration(cls, payload: dict[str, Any], recovery_code: str = "") -> "Session":
        """Build a session from a successful register/recover response.

        The backend reports the contact id as phone_number or email
        depending on deployment. Recovery responses omit the recovery
        code, so the one the user entered is kept instead.
        """
        contact_id = payload.get("phone_number") or payload.get("email") or ""
        return cls(
            registered=True,
            handle=str(payload.get("handle") or ""),
            contact_id=str(contact_id),
            recovery_code=str(payload.get("recovery_code") or recovery_code),
            session_token=str(payload.get("session_token") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the credential cache format."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Deserialize from the credential cache format.

        Missing or null keys fall back to the empty session values.
        """
        return cls(
            registered=bool(data.get("registered", False)),
            handle=str(data.get("handle") or ""),
            contact_id=str(data.get("contact_id") or ""),
            recovery_code=str(data.get("recovery_code") or ""),
            session_token=str(data.get("session_token") or ""),
        )
