"""Per-event ticket retrieval from the ticketing API."""
import logging
import time
from enum import Enum
from typing import Any, Dict, Iterable

import requests

from processor.exceptions import AuthError, FetchError, ParseError, TicketSyncError
from processor.models import Event, FetchResult
from processor.ticket_processor import TicketProcessor
from processor.xml_codec import xml_to_json
from remote.auth_provider import AuthProvider, build_url
from settings.config_provider import ConfigProvider
from storage.file_store import FileStore

logger = logging.getLogger(__name__)


class AuthState(Enum):
    """States of a single authenticated ticket request."""
    UNAUTHENTICATED = 'unauthenticated'
    AUTHENTICATING = 'authenticating'
    FETCHING = 'fetching'
    REAUTH_REQUIRED = 'reauth_required'
    SUCCESS = 'success'
    FAILED = 'failed'


class TicketFetcher:
    """Fetches and saves ticket records for each event."""

    SYNCHRONIZE_PATH = '/service.php/usher/{event_id}/synchronize.xml'
    MAX_AUTH_RETRIES = 3

    def __init__(
        self,
        config: ConfigProvider,
        auth_provider: AuthProvider,
        file_store: FileStore,
        processor: TicketProcessor = None,
        timeout: float = 30,
        retry_delay: float = 1.0
    ):
        """
        Initialize the ticket fetcher.

        Args:
            config: Provides ENDPOINTURL
            auth_provider: Session holder, re-invoked when the API returns 401
            file_store: Receives one JSON file per event
            processor: Ticket normalizer (default: new TicketProcessor)
            timeout: HTTP request timeout in seconds (default: 30)
            retry_delay: Seconds to wait before each re-authentication
        """
        self.config = config
        self.auth_provider = auth_provider
        self.file_store = file_store
        self.processor = processor or TicketProcessor()
        self.timeout = timeout
        self.retry_delay = retry_delay

    def fetch_tickets_for_event(self, event_id: str) -> Dict[str, Any]:
        """
        Fetch the synchronize document for one event.

        An auth failure (401, or a 500 carrying a 401 code) triggers a new
        login and a retry of the same request, up to MAX_AUTH_RETRIES times.

        Args:
            event_id: Repertoire identifier

        Returns:
            Parsed synchronize document with ticket records as lists

        Raises:
            AuthError: If login fails or every retry is rejected
            FetchError: If the request fails for any other reason
            ParseError: If the response is not XML
        """
        logger.info(f"Fetching tickets for event {event_id}")
        state = AuthState.FETCHING if self.auth_provider.session else AuthState.UNAUTHENTICATED
        reauth_attempts = 0
        response = None

        while state not in (AuthState.SUCCESS, AuthState.FAILED):
            if state is AuthState.UNAUTHENTICATED:
                state = AuthState.AUTHENTICATING
            elif state is AuthState.AUTHENTICATING:
                self.auth_provider.login()
                state = AuthState.FETCHING
            elif state is AuthState.FETCHING:
                response = self._request_synchronize(event_id)
                if self._is_auth_failure(response):
                    state = AuthState.REAUTH_REQUIRED
                else:
                    state = AuthState.SUCCESS
            elif state is AuthState.REAUTH_REQUIRED:
                if reauth_attempts >= self.MAX_AUTH_RETRIES:
                    state = AuthState.FAILED
                    continue
                reauth_attempts += 1
                logger.warning(
                    f"Authentication rejected for event {event_id} "
                    f"(retry {reauth_attempts}/{self.MAX_AUTH_RETRIES}). "
                    f"Logging in again in {self.retry_delay} seconds..."
                )
                time.sleep(self.retry_delay)
                state = AuthState.AUTHENTICATING

        if state is AuthState.FAILED:
            logger.error(
                f"Authentication failed for event {event_id} after "
                f"{self.MAX_AUTH_RETRIES} retries"
            )
            raise AuthError(
                f"Authentication failed for event {event_id} after "
                f"{self.MAX_AUTH_RETRIES} retries"
            )

        if not response.ok:
            raise FetchError(
                f"HTTP {response.status_code} fetching tickets for event {event_id}",
                status=response.status_code
            )

        return xml_to_json(response.content, force_list=TicketProcessor.RECORD_KEYS)

    def fetch_tickets_for_all_events(self, event_list: Iterable[Event]) -> FetchResult:
        """
        Fetch and save tickets for every event, one at a time.

        Failures are logged per event and do not stop the batch.

        Args:
            event_list: Events to process, in order

        Returns:
            FetchResult with saved and failed counts
        """
        events = list(event_list)
        logger.info(f"Starting fetch tickets process for {len(events)} events")
        saved = 0
        errors = []

        for event in events:
            logger.info(f"Processing event: {event.event_id}")
            try:
                payload = self.fetch_tickets_for_event(event.event_id)
                tickets = self.processor.extract_tickets(payload)
                if tickets:
                    logger.info(f"Found {len(tickets)} tickets for event: {event.event_id}")
                else:
                    logger.info(f"No tickets found for event: {event.event_id}")

                self.save_tickets_to_file(tickets, event.event_id)
                self.processor.update_latest_ticket_date(tickets)
                saved += 1
            except (TicketSyncError, OSError) as e:
                error_msg = f"Error fetching tickets for event {event.event_id}: {e}"
                logger.error(error_msg, extra={'error_type': type(e).__name__})
                errors.append(error_msg)
                continue

        latest = self.processor.latest_ticket_date
        latest_text = latest.isoformat() if latest else None
        logger.info(
            f"Fetch tickets complete: {saved} saved, {len(errors)} failed, "
            f"latest ticket date {latest_text}"
        )
        return FetchResult(
            saved=saved,
            failed=len(errors),
            errors=errors,
            latest_ticket_date=latest_text
        )

    def save_tickets_to_file(self, tickets: list, event_id: str):
        filename = self.file_store.get_timestamped_filename('response_tickets_event', event_id)
        return self.file_store.save_json(tickets, filename)

    def _request_synchronize(self, event_id: str) -> requests.Response:
        url = build_url(self.config, self.SYNCHRONIZE_PATH.format(event_id=event_id))
        try:
            return requests.get(
                url,
                params=self.auth_provider.session_params(),
                headers=self.auth_provider.request_headers(),
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise FetchError(f"Request for event {event_id} tickets failed: {e}") from e

    def _is_auth_failure(self, response: requests.Response) -> bool:
        """
        Check whether a response means the session was rejected.

        Args:
            response: Response from the synchronize endpoint

        Returns:
            True for HTTP 401, or HTTP 500 with an embedded 401 code
        """
        if response.status_code == 401:
            return True
        if response.status_code != 500:
            return False

        try:
            body = xml_to_json(response.content)
        except ParseError:
            return False
        return _contains_auth_code(body)


def _contains_auth_code(value: Any) -> bool:
    if isinstance(value, dict):
        for key, item in value.items():
            if key in ('code', 'status', 'error_code') and str(item).strip() == '401':
                return True
            if _contains_auth_code(item):
                return True
    elif isinstance(value, list):
        return any(_contains_auth_code(item) for item in value)
    return False
