"""Authentication against the ticketing API."""
import logging
from typing import Dict, Optional
from urllib.parse import urljoin

import requests

from processor.exceptions import AuthError, FetchError
from processor.models import Session
from processor.xml_codec import xml_to_json
from settings.config_provider import ConfigProvider
from storage.file_store import FileStore

logger = logging.getLogger(__name__)

USER_AGENT = 'TicketSync/1.0'


def build_url(config: ConfigProvider, path: str) -> str:
    """Resolve an absolute API path against ``ENDPOINTURL``."""
    return urljoin(config.require('ENDPOINTURL'), path)


def http_get(url: str, timeout: float, **kwargs) -> requests.Response:
    """
    GET ``url`` and raise FetchError for transport errors and non-2xx replies.

    Returns:
        The successful response
    """
    try:
        response = requests.get(url, timeout=timeout, **kwargs)
        response.raise_for_status()
        return response
    except requests.HTTPError as e:
        raise FetchError(
            f"HTTP {e.response.status_code} from {url.split('?')[0]}",
            status=e.response.status_code
        ) from e
    except requests.RequestException as e:
        raise FetchError(f"Request to {url.split('?')[0]} failed: {e}") from e


class AuthProvider:
    """Logs in to the ticketing API and holds the current session."""

    LOGIN_PATH = '/service.php/home/login.xml'

    def __init__(self, config: ConfigProvider, file_store: FileStore, timeout: float = 30):
        """
        Initialize the auth provider.

        Args:
            config: Provides ENDPOINTURL, USERNAME and USERPASS
            file_store: Receives the raw login response
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.config = config
        self.file_store = file_store
        self.timeout = timeout
        self.session: Optional[Session] = None

    def login(self) -> str:
        """
        Log in and store the returned session token.

        The raw response body is written to disk before it is parsed.

        Returns:
            Session token

        Raises:
            AuthError: If the response carries no session token
            FetchError: If the HTTP request fails
            ParseError: If the response is not XML
        """
        logger.info("Attempting to log in")
        response = http_get(
            build_url(self.config, self.LOGIN_PATH),
            self.timeout,
            params={
                'login': self.config.require('USERNAME'),
                'password': self.config.require('USERPASS')
            },
            headers={'Accept': 'application/xml', 'User-Agent': USER_AGENT}
        )

        self.file_store.save_to_file(
            response.content,
            self.file_store.get_timestamped_filename('response_login', extension='xml')
        )

        token = self._extract_session(xml_to_json(response.content))
        if not token:
            logger.error("Session token not found in the login response")
            raise AuthError('Session token not found in the response')

        self.session = Session(token=token)
        logger.info("Login successful, session token refreshed")
        return token

    def get_session_token(self) -> Optional[str]:
        """Current session token, or None before the first login."""
        return self.session.token if self.session else None

    def session_params(self) -> Dict[str, str]:
        """Query parameters that carry the session, empty before login."""
        return self.session.params if self.session else {}

    def request_headers(self) -> Dict[str, str]:
        """
        Headers for API requests.

        Returns:
            Accept and User-Agent headers, plus the session cookie once logged in
        """
        headers = {'Accept': 'application/xml', 'User-Agent': USER_AGENT}
        if self.session:
            headers['Cookie'] = self.session.cookie
        return headers

    def _extract_session(self, parsed: dict) -> Optional[str]:
        """Find a non-empty <session> value directly under the root element."""
        # Root is usually <logged>; accept any root that carries <session>.
        for body in parsed.values():
            if isinstance(body, dict):
                session = body.get('session')
                if isinstance(session, list):
                    session = session[0] if session else None
                if isinstance(session, str) and session.strip():
                    return session.strip()
        return None
