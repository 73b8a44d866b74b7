"""Ticket processor for normalizing synchronize payloads."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class TicketProcessor:
    """Normalizes ticket records and tracks the latest ticket date."""

    RECORD_KEYS = ('ticket', 'pass', 'element')
    DATE_FIELDS = ('entry_time', 'out_time', 'date')

    def __init__(self):
        self.latest_ticket_date: Optional[datetime] = None

    def extract_tickets(self, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Pull the ticket records out of a parsed synchronize response.

        Args:
            payload: Parsed XML, e.g. ``{'synchronize': {'ticket': [...]}}``

        Returns:
            List of ticket records, empty when the payload holds none
        """
        body = payload.get('synchronize') if isinstance(payload, dict) else None
        if not isinstance(body, dict):
            return []

        for key in self.RECORD_KEYS:
            records = body.get(key)
            if records is None or records == '':
                continue
            if not isinstance(records, list):
                records = [records]
            return [record for record in records if isinstance(record, dict)]

        return []

    def update_latest_ticket_date(self, tickets: List[Dict[str, Any]]) -> Optional[datetime]:
        """
        Advance the watermark to the newest date seen in ``tickets``.

        The watermark only moves forward; unparseable dates are ignored.

        Returns:
            Current watermark
        """
        for ticket in tickets:
            for field_name in self.DATE_FIELDS:
                parsed = self._parse_date(ticket.get(field_name))
                if parsed and (self.latest_ticket_date is None or parsed > self.latest_ticket_date):
                    self.latest_ticket_date = parsed

        return self.latest_ticket_date

    def _parse_date(self, value: Any) -> Optional[datetime]:
        """
        Parse a ticket date in the formats the API is known to emit.

        Args:
            value: Date string from a ticket record

        Returns:
            datetime or None if parsing fails
        """
        if not value or not isinstance(value, str):
            return None

        date_formats = [
            '%Y-%m-%d %H:%M:%S',   # API timestamps
            '%Y-%m-%dT%H:%M:%S',   # ISO 8601
            '%d.%m.%Y, %H:%M:%S',  # pl-PL locale string
            '%d.%m.%Y %H:%M:%S',
            '%d.%m.%Y',
            '%Y-%m-%d',
        ]

        for fmt in date_formats:
            try:
                return datetime.strptime(value.strip(), fmt)
            except ValueError:
                continue

        if value.strip().isdigit():
            try:
                return datetime.fromtimestamp(int(value.strip()))
            except (OverflowError, OSError, ValueError):
                return None

        return None
