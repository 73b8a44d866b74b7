"""Unit tests for TicketFetcher."""
import json
import logging
from unittest.mock import Mock

import pytest
import responses
from requests.exceptions import ConnectionError

from processor.exceptions import AuthError, FetchError
from processor.models import Event, Session
from remote.auth_provider import AuthProvider
from remote.ticket_fetcher import TicketFetcher
from settings.config_provider import ConfigProvider
from storage.file_store import FileStore

BASE_URL = 'https://tickets.example.com'


def sync_url(event_id):
    return f'{BASE_URL}/service.php/usher/{event_id}/synchronize.xml'


def sync_xml(event_id, tickets):
    elements = ''.join(
        f'<ticket><name>{name}</name><price>45,00</price><entry>0</entry>'
        f'<entry_time>{entry_time}</entry_time><barcode>{400000 + i}</barcode></ticket>'
        for i, (name, entry_time) in enumerate(tickets)
    )
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<synchronize entry_count="0" repertoire_id="{event_id}">{elements}</synchronize>'
    ).encode('utf-8')


@pytest.fixture
def config():
    return ConfigProvider(overrides={'ENDPOINTURL': BASE_URL}, use_environment=False)


@pytest.fixture
def file_store(tmp_path):
    return FileStore(tmp_path)


@pytest.fixture
def auth_provider():
    """Create a mock AuthProvider holding a valid session."""
    auth = Mock(spec=AuthProvider)
    auth.session = Session(token='tok123')
    auth.session_params.return_value = {'symfony': 'tok123'}
    auth.request_headers.return_value = {
        'Accept': 'application/xml',
        'Cookie': 'PHPSESSID=tok123; symfony=tok123'
    }
    return auth


@pytest.fixture
def ticket_fetcher(config, auth_provider, file_store):
    return TicketFetcher(config, auth_provider, file_store, retry_delay=0)


@pytest.fixture
def events():
    return [Event.from_record({'id': event_id}) for event_id in ('601', '602', '603')]


def ticket_files(file_store, event_id='*'):
    return sorted(file_store.get_output_folder().glob(f'response_tickets_event_{event_id}_*.json'))


class TestFetchTicketsForEvent:
    """Test cases for fetching a single event."""

    @responses.activate
    def test_fetch_sends_session(self, ticket_fetcher):
        """Test that the session is sent as query parameter and cookie."""
        responses.add(responses.GET, sync_url('601'), body=sync_xml('601', [('A', '')]), status=200)

        payload = ticket_fetcher.fetch_tickets_for_event('601')

        assert payload['synchronize']['repertoire_id'] == '601'
        request = responses.calls[0].request
        assert 'symfony=tok123' in request.url
        assert request.headers['Cookie'] == 'PHPSESSID=tok123; symfony=tok123'

    @responses.activate
    def test_single_ticket_is_returned_as_list(self, ticket_fetcher):
        """Test that one ticket element is normalized to a list at parse time."""
        responses.add(responses.GET, sync_url('601'), body=sync_xml('601', [('A', '')]), status=200)

        payload = ticket_fetcher.fetch_tickets_for_event('601')

        assert isinstance(payload['synchronize']['ticket'], list)
        assert payload['synchronize']['ticket'][0]['name'] == 'A'

    @responses.activate
    def test_reauth_once_after_401(self, ticket_fetcher, auth_provider):
        """Test that a 401 triggers exactly one login before the successful retry."""
        responses.add(responses.GET, sync_url('601'), body='Unauthorized', status=401)
        responses.add(responses.GET, sync_url('601'), body=sync_xml('601', [('A', '')]), status=200)

        payload = ticket_fetcher.fetch_tickets_for_event('601')

        assert payload['synchronize']['ticket'][0]['name'] == 'A'
        assert auth_provider.login.call_count == 1
        assert len(responses.calls) == 2

    @responses.activate
    def test_reauth_after_500_with_embedded_401(self, ticket_fetcher, auth_provider):
        """Test that a 500 carrying a 401 code is treated as an auth failure."""
        responses.add(
            responses.GET,
            sync_url('601'),
            body=b'<error><code>401</code><message>Session expired</message></error>',
            status=500
        )
        responses.add(responses.GET, sync_url('601'), body=sync_xml('601', [('A', '')]), status=200)

        ticket_fetcher.fetch_tickets_for_event('601')

        assert auth_provider.login.call_count == 1

    @responses.activate
    def test_auth_error_after_all_retries(self, ticket_fetcher, auth_provider):
        """Test that 401 on the initial attempt and all 3 retries raises AuthError."""
        for _ in range(4):
            responses.add(responses.GET, sync_url('601'), body='Unauthorized', status=401)

        with pytest.raises(AuthError):
            ticket_fetcher.fetch_tickets_for_event('601')

        assert len(responses.calls) == 4
        assert auth_provider.login.call_count == 3

    @responses.activate
    def test_plain_500_raises_fetch_error_without_reauth(self, ticket_fetcher, auth_provider):
        """Test that other server errors are not retried."""
        responses.add(responses.GET, sync_url('601'), body='Server Error', status=500)

        with pytest.raises(FetchError) as exc_info:
            ticket_fetcher.fetch_tickets_for_event('601')

        assert exc_info.value.status == 500
        auth_provider.login.assert_not_called()

    @responses.activate
    def test_logs_in_when_no_session(self, ticket_fetcher, auth_provider):
        """Test that a missing session triggers a login before the request."""
        auth_provider.session = None
        responses.add(responses.GET, sync_url('601'), body=sync_xml('601', [('A', '')]), status=200)

        ticket_fetcher.fetch_tickets_for_event('601')

        assert auth_provider.login.call_count == 1

    @responses.activate
    def test_connection_error_raises_fetch_error(self, ticket_fetcher):
        """Test that transport errors raise FetchError."""
        responses.add(responses.GET, sync_url('601'), body=ConnectionError('reset'))

        with pytest.raises(FetchError):
            ticket_fetcher.fetch_tickets_for_event('601')


class TestFetchTicketsForAllEvents:
    """Test cases for the per-event batch."""

    @responses.activate
    def test_one_file_per_event(self, ticket_fetcher, file_store, events):
        """Test that N successful events produce N JSON array files."""
        responses.add(responses.GET, sync_url('601'), body=sync_xml('601', [('A', ''), ('B', '')]), status=200)
        responses.add(responses.GET, sync_url('602'), body=sync_xml('602', [('C', '')]), status=200)
        responses.add(responses.GET, sync_url('603'), body=sync_xml('603', []), status=200)

        result = ticket_fetcher.fetch_tickets_for_all_events(events)

        assert result.saved == 3
        assert result.failed == 0
        assert len(ticket_files(file_store)) == 3

        contents = {
            event_id: json.loads(ticket_files(file_store, event_id)[0].read_text(encoding='utf-8'))
            for event_id in ('601', '602', '603')
        }
        assert [t['name'] for t in contents['601']] == ['A', 'B']
        assert isinstance(contents['602'], list)
        assert contents['602'][0]['name'] == 'C'
        assert contents['603'] == []

    @responses.activate
    def test_events_processed_in_order(self, ticket_fetcher, events):
        """Test that events are fetched sequentially in list order."""
        for event in events:
            responses.add(responses.GET, sync_url(event.event_id), body=sync_xml(event.event_id, []), status=200)

        ticket_fetcher.fetch_tickets_for_all_events(events)

        fetched = [call.request.url.split('/usher/')[1].split('/')[0] for call in responses.calls]
        assert fetched == ['601', '602', '603']

    @responses.activate
    def test_failed_event_does_not_abort_batch(self, ticket_fetcher, file_store, events, caplog):
        """Test that a transport error on one event is logged and skipped."""
        responses.add(responses.GET, sync_url('601'), body=sync_xml('601', [('A', '')]), status=200)
        responses.add(responses.GET, sync_url('602'), body=ConnectionError('reset'))
        responses.add(responses.GET, sync_url('603'), body=sync_xml('603', [('C', '')]), status=200)

        with caplog.at_level(logging.ERROR):
            result = ticket_fetcher.fetch_tickets_for_all_events(events)

        assert result.saved == 2
        assert result.failed == 1
        assert 'event 602' in result.errors[0]
        assert len(ticket_files(file_store, '601')) == 1
        assert ticket_files(file_store, '602') == []
        assert len(ticket_files(file_store, '603')) == 1
        assert any('602' in r.message for r in caplog.records if r.levelno == logging.ERROR)

    @responses.activate
    def test_exhausted_auth_does_not_abort_batch(self, ticket_fetcher, file_store, events):
        """Test that an AuthError on one event is contained to that event."""
        responses.add(responses.GET, sync_url('601'), body=sync_xml('601', [('A', '')]), status=200)
        for _ in range(4):
            responses.add(responses.GET, sync_url('602'), body='Unauthorized', status=401)
        responses.add(responses.GET, sync_url('603'), body=sync_xml('603', [('C', '')]), status=200)

        result = ticket_fetcher.fetch_tickets_for_all_events(events)

        assert result.saved == 2
        assert result.failed == 1
        assert ticket_files(file_store, '602') == []

    @responses.activate
    def test_latest_ticket_date_watermark(self, ticket_fetcher, events):
        """Test that the latest observed ticket date is reported."""
        responses.add(
            responses.GET,
            sync_url('601'),
            body=sync_xml('601', [('A', '2024-01-15 19:05:00'), ('B', '2024-01-15 19:20:00')]),
            status=200
        )
        responses.add(responses.GET, sync_url('602'), body=sync_xml('602', [('C', '2024-01-15 18:00:00')]), status=200)
        responses.add(responses.GET, sync_url('603'), body=sync_xml('603', []), status=200)

        result = ticket_fetcher.fetch_tickets_for_all_events(events)

        assert result.latest_ticket_date == '2024-01-15T19:20:00'

    def test_empty_event_list(self, ticket_fetcher, file_store):
        """Test that an empty event list writes nothing."""
        result = ticket_fetcher.fetch_tickets_for_all_events([])

        assert result.saved == 0
        assert result.failed == 0
        assert ticket_files(file_store) == []

    @responses.activate
    def test_element_records_saved_verbatim(self, ticket_fetcher, file_store):
        """Test that ticket and pass fields inside records are not wrapped in lists."""
        body = (
            b'<synchronize entry_count="0" repertoire_id="601">'
            b'<element><name>Ticket 1</name><price>45,00</price><entry>0</entry>'
            b'<entry_time></entry_time><pass></pass><ticket>4000000000123</ticket>'
            b'<out>0</out><out_time></out_time></element>'
            b'</synchronize>'
        )
        responses.add(responses.GET, sync_url('601'), body=body, status=200)

        result = ticket_fetcher.fetch_tickets_for_all_events([Event.from_record({'id': '601'})])

        assert result.saved == 1
        saved = json.loads(ticket_files(file_store, '601')[0].read_text(encoding='utf-8'))
        assert saved == [{
            'name': 'Ticket 1',
            'price': '45,00',
            'entry': '0',
            'entry_time': '',
            'pass': '',
            'ticket': '4000000000123',
            'out': '0',
            'out_time': ''
        }]

    @responses.activate
    def test_truncated_response_writes_no_file(self, ticket_fetcher, file_store, events):
        """Test that a cut-off synchronize body fails that event without a partial file."""
        responses.add(responses.GET, sync_url('601'), body=sync_xml('601', [('A', '')]), status=200)
        responses.add(
            responses.GET,
            sync_url('602'),
            body=b'<synchronize repertoire_id="602"><ticket><name>B</name></ticket>',
            status=200
        )
        responses.add(responses.GET, sync_url('603'), body=sync_xml('603', [('C', '')]), status=200)

        result = ticket_fetcher.fetch_tickets_for_all_events(events)

        assert result.saved == 2
        assert result.failed == 1
        assert ticket_files(file_store, '602') == []
