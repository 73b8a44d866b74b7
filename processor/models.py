"""Data models for ticket synchronization."""
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class Session:
    """Session token issued by the ticketing API at login."""
    token: str
    issued_at: float = field(default_factory=time.time)

    @property
    def params(self) -> Dict[str, str]:
        return {'symfony': self.token}

    @property
    def cookie(self) -> str:
        return f"PHPSESSID={self.token}; symfony={self.token}"


@dataclass
class Event:
    """Repertoire entry as returned by the event list endpoint."""
    event_id: str
    name: str
    date: str
    free: Optional[str]
    tickets: Optional[str]
    raw: Dict[str, Any]

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Event':
        """
        Build an Event from a parsed repertoire record.

        Args:
            record: Repertoire record with attributes merged into keys

        Returns:
            Event object

        Raises:
            ValueError: If the record carries no identifier
        """
        event_id = record.get('id')
        if not event_id:
            raise ValueError(f"Repertoire record has no id: {record!r}")

        return cls(
            event_id=str(event_id),
            name=record.get('name') or record.get('title') or '',
            date=record.get('date') or '',
            free=record.get('free'),
            tickets=record.get('tickets'),
            raw=record
        )


@dataclass
class FetchResult:
    """Result of a ticket fetch batch."""
    saved: int
    failed: int
    errors: list[str]
    latest_ticket_date: Optional[str] = None
