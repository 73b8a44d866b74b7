"""Entry point for the ticketing API sync service."""
import argparse
import json
import logging
import os
import sys
import time
from typing import Any, Dict, List, Optional

from processor.models import FetchResult
from processor.xml_codec import convert_xml_file
from remote.auth_provider import AuthProvider
from remote.event_lister import EventLister
from remote.ticket_fetcher import TicketFetcher
from scheduling.scheduler import Scheduler
from settings.config_provider import DEFAULT_CONFIG_PATH, ConfigProvider
from storage.file_store import FileStore

logger = logging.getLogger(__name__)

DEFAULT_LOG_LEVEL = 'INFO'

# Attributes present on every LogRecord; anything else came in via ``extra``.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any ``extra`` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = DEFAULT_LOG_LEVEL) -> None:
    """
    Route all sync logs to stderr as one JSON object per line.

    Args:
        log_level: Value of the LOG_LEVEL setting (DEBUG, INFO, WARNING,
            ERROR); unknown names fall back to INFO
    """
    root_logger = logging.getLogger()

    # Replace handlers so repeated setup never duplicates output
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


class TicketSync:
    """Wires the sync components together and owns their shared state."""

    def __init__(self, config: ConfigProvider):
        self.config = config
        timeout = config.get_float('REQUEST_TIMEOUT_SECONDS', 30)

        self.file_store = FileStore(config.get('OUTPUT_DIR', '/tmp/vnintegration/'))
        self.auth_provider = AuthProvider(config, self.file_store, timeout=timeout)
        self.event_lister = EventLister(config, self.auth_provider, self.file_store, timeout=timeout)
        self.ticket_fetcher = TicketFetcher(config, self.auth_provider, self.file_store, timeout=timeout)
        self.scheduler = Scheduler(
            config,
            on_event_list_update=self.event_lister.update_event_list,
            on_ticket_fetch=self.fetch_tickets
        )

    def refresh_events(self) -> FetchResult:
        """Update the event list, then fetch tickets for it."""
        self.event_lister.update_event_list()
        return self.fetch_tickets()

    def fetch_tickets(self) -> FetchResult:
        """Fetch tickets for the event list currently held in memory."""
        return self.ticket_fetcher.fetch_tickets_for_all_events(self.event_lister.get_event_list())

    def start(self) -> None:
        """
        Run the initial fetch, then start the periodic timers.

        Any error from the initial fetch is logged; the timers start
        regardless so the next tick can recover.
        """
        logger.info(f"Output folder set to: {self.file_store.get_output_folder()}")
        try:
            self.refresh_events()
            logger.info("Initial data fetch completed")
        except Exception as e:
            logger.error(
                f"Error during initial data fetch: {e}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )

        self.scheduler.start_periodic_updates()

    def stop(self) -> None:
        """Stop both periodic timers."""
        self.scheduler.stop()


def _trigger(action, success_message: str, failure_message: str) -> Dict[str, Any]:
    """
    Run a manual trigger and shape the outcome as a status response.

    Args:
        action: Callable returning a FetchResult
        success_message: Message for the 200 body
        failure_message: Message for the 500 body and the error log

    Returns:
        Response dict with statusCode and a JSON body
    """
    start_time = time.time()
    try:
        result = action()
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"{failure_message}: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': failure_message,
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }

    duration = time.time() - start_time
    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': success_message,
            'statistics': {
                'tickets_saved': result.saved,
                'tickets_failed': result.failed,
                'latest_ticket_date': result.latest_ticket_date,
                'duration_seconds': round(duration, 2)
            },
            'errors': result.errors
        })
    }


def fetch_events_handler(sync: TicketSync) -> Dict[str, Any]:
    """
    Manually refresh the event list and fetch tickets.

    Returns:
        Response dict with statusCode 200 on success or 500 on error
    """
    return _trigger(
        sync.refresh_events,
        'Event list has been updated and tickets have been fetched.',
        'An error occurred while updating the event list and fetching tickets.'
    )


def fetch_tickets_handler(sync: TicketSync) -> Dict[str, Any]:
    """
    Manually fetch tickets for the current event list.

    Returns:
        Response dict with statusCode 200 on success or 500 on error
    """
    return _trigger(
        sync.fetch_tickets,
        'Tickets have been fetched and saved for all events.',
        'An error occurred while fetching tickets.'
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser; ``run`` is the command when none is given."""
    parser = argparse.ArgumentParser(description='Sync events and tickets from the ticketing API')
    parser.add_argument(
        '--config',
        default=os.environ.get('TICKETSYNC_CONFIG', DEFAULT_CONFIG_PATH),
        help='Path to the KEY=VALUE settings file'
    )
    subparsers = parser.add_subparsers(dest='command')
    subparsers.add_parser('run', help='Fetch once, then keep refreshing on timers (default)')
    subparsers.add_parser('fetch-events', help='Refresh the event list and fetch tickets once')
    convert = subparsers.add_parser('convert', help='Convert an XML file to JSON')
    convert.add_argument('xml_path')
    convert.add_argument('json_path')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Load settings, configure logging and run the chosen command.

    Args:
        argv: Command line arguments, defaults to ``sys.argv[1:]``

    Returns:
        Process exit code, 1 when a one-shot fetch fails
    """
    args = build_parser().parse_args(argv)
    command = args.command or 'run'

    config = ConfigProvider(args.config)
    setup_logging(config.get('LOG_LEVEL', DEFAULT_LOG_LEVEL))

    if command == 'convert':
        convert_xml_file(args.xml_path, args.json_path)
        return 0

    sync = TicketSync(config)

    if command == 'fetch-events':
        response = fetch_events_handler(sync)
    else:
        sync.start()
        try:
            while True:
                time.sleep(3600)
        except KeyboardInterrupt:
            logger.info("Shutting down")
            sync.stop()
        return 0

    print(response['body'])
    return 0 if response['statusCode'] == 200 else 1


if __name__ == '__main__':
    sys.exit(main())
