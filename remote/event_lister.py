"""Event list (repertoire) retrieval from the ticketing API."""
import logging
from typing import Any, Dict, List

from processor.models import Event
from processor.xml_codec import xml_to_json
from remote.auth_provider import AuthProvider, build_url, http_get
from settings.config_provider import ConfigProvider
from storage.file_store import FileStore

logger = logging.getLogger(__name__)


class EventLister:
    """Keeps the current list of events in memory."""

    LIST_PATH = '/service.php/repertoire/list.xml'

    def __init__(
        self,
        config: ConfigProvider,
        auth_provider: AuthProvider,
        file_store: FileStore,
        timeout: float = 30
    ):
        self.config = config
        self.auth_provider = auth_provider
        self.file_store = file_store
        self.timeout = timeout
        self.event_list: List[Event] = []

    def fetch_event_list(self) -> Dict[str, Any]:
        """
        Request the repertoire list with the current session.

        The response is saved as JSON, or as raw XML when OUTPUT_FORMAT is xml.

        Returns:
            Parsed repertoire document

        Raises:
            FetchError: If the HTTP request fails
            ParseError: If the response is not XML
        """
        logger.info("Fetching event list")
        response = http_get(
            build_url(self.config, self.LIST_PATH),
            self.timeout,
            params=self.auth_provider.session_params(),
            headers=self.auth_provider.request_headers()
        )

        parsed = xml_to_json(response.content, force_list=('repertoire',))

        output_format = self.config.output_format
        filename = self.file_store.get_timestamped_filename(
            'response_getrepertoire', extension=output_format
        )
        if output_format == 'json':
            self.file_store.save_json(parsed, filename)
        else:
            self.file_store.save_to_file(response.content, filename)

        return parsed

    def update_event_list(self) -> None:
        """
        Re-authenticate and replace the event list with the remote repertoire.

        A response without a repertoire collection is logged and leaves the
        current list unchanged.

        Raises:
            AuthError: If login fails
            FetchError: If an HTTP request fails
        """
        logger.info("Updating event list")
        self.auth_provider.login()
        fetched = self.fetch_event_list()

        repertoires = fetched.get('repertoires')
        records = repertoires.get('repertoire') if isinstance(repertoires, dict) else None
        if not records:
            logger.error("No events found in the response")
            return

        events = []
        for record in records:
            if not isinstance(record, dict):
                logger.warning(f"Skipping malformed repertoire record: {record!r}")
                continue
            try:
                events.append(Event.from_record(record))
            except ValueError as e:
                logger.warning(f"Skipping repertoire record: {e}")

        self.event_list = events
        logger.info(f"Updated event list. Found {len(self.event_list)} events")

    def get_event_list(self) -> List[Event]:
        return list(self.event_list)
