"""
audit/models.py -- Domain dataclasses for the audit trail.

AuditEntry rows are never updated or deleted -- only inserted. before/after
hold the JSON-serializable snapshot of the entity around the change.
"""

from dataclasses import dataclass
from typing import Any, Optional

ACTIONS = (
    "LOGIN",
    "CREATE",
    "UPDATE",
    "DELETE",
    "ACCEPT_TERMS",
    "PUBLISH_PROPERTY",
    "ARCHIVE_PROPERTY",
)


@dataclass(frozen=True)
class ClientInfo:
    """Caller network identity captured at the HTTP edge."""

    ip: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class AuditEntry:
    action: str
    entity: str  # "User", "Property", "Review", "Message", "Booking", "Term"
    id: Optional[str] = None
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    before: Optional[Any] = None
    after: Optional[Any] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
