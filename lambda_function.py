"""AWS Lambda handler for rink schedule sync and serving."""
import json
import logging
import re
import time
from dataclasses import replace
from typing import Any, Dict, Optional, Tuple

from botocore.exceptions import ClientError

from orchestrator.config import FACILITY_CATALOG, PipelineConfig, get_facility
from orchestrator.dispatchers import HttpDispatcher, LocalDispatcher
from orchestrator.pipeline import FacilityPipeline
from orchestrator.scheduler import Orchestrator
from processor.event_processor import EventProcessor
from processor.exceptions import UnknownFacility
from processor.models import FacilityMetadata
from processor.time_normalizer import utc_now
from scraper.gateway import FetchGateway
from storage.dynamodb_manager import DynamoDBManager

# Attributes every LogRecord carries; anything else came in through extra=
RESERVED_LOG_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}

ENDPOINTS = [
    'GET|POST /trigger',
    'GET /status',
    'POST /scrape/{facilityId}',
    'GET /data/{facilityId}.json',
    'GET /data/{facilityId}-metadata.json',
    'GET /api/all-events',
    'GET /api/all-metadata',
]

DATA_ROUTE = re.compile(r'^/data/(?P<facility_id>[\w-]+?)(?P<metadata>-metadata)?\.json$')
SCRAPE_ROUTE = re.compile(r'^/scrape/(?P<facility_id>[\w-]+)$')

# Time kept back from the invocation for persisting the run summary
SUMMARY_RESERVE_SECONDS = 30


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any extra= fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in RESERVED_LOG_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


logger = logging.getLogger(__name__)


def _response(status_code: int, body: Any) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body)
    }


def _error_response(e: Exception, message: str, started: float) -> Dict[str, Any]:
    duration = time.time() - started
    logger.error(
        f"{message}: {e}",
        extra={'error_type': type(e).__name__, 'duration_seconds': round(duration, 2)},
        exc_info=True
    )
    return _response(500, {
        'message': message,
        'error': str(e),
        'error_type': type(e).__name__,
        'duration_seconds': round(duration, 2)
    })


def _request_line(event: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """Return (method, path) for API Gateway / function URL events, None otherwise."""
    if 'httpMethod' in event:
        return event['httpMethod'].upper(), event.get('path') or '/'
    http = event.get('requestContext', {}).get('http')
    if http:
        return http.get('method', 'GET').upper(), event.get('rawPath') or http.get('path') or '/'
    return None


def build_pipeline(config: PipelineConfig, store: DynamoDBManager) -> FacilityPipeline:
    gateway = FetchGateway(timeout=config.timeout_seconds, use_relays=config.use_relays)
    processor = EventProcessor(
        reference_timezone=config.reference_timezone,
        window_days=config.window_days
    )
    return FacilityPipeline(
        store,
        gateway,
        processor=processor,
        reference_timezone=config.reference_timezone
    )


def build_orchestrator(config: PipelineConfig, store: DynamoDBManager) -> Orchestrator:
    """Wire the orchestrator with the HTTP dispatcher when a template is configured."""
    if config.scraper_endpoint_template:
        dispatch = HttpDispatcher(
            config.scraper_endpoint_template,
            timeout_seconds=config.facility_timeout_seconds
        )
    else:
        dispatch = LocalDispatcher(
            build_pipeline(config, store),
            timeout_seconds=config.facility_timeout_seconds
        )

    return Orchestrator(
        config.facility_ids,
        dispatch,
        store,
        splay_minutes=config.splay_minutes,
        facility_timeout_seconds=config.facility_timeout_seconds,
        run_interval_hours=config.run_interval_hours
    )


def run_cycle(config: PipelineConfig, store: DynamoDBManager) -> Dict[str, Any]:
    run = build_orchestrator(config, store).run_cycle(apply_splay=False)
    return _response(200, run.to_dict())


def run_scheduled(config: PipelineConfig, store: DynamoDBManager) -> Dict[str, Any]:
    run = build_orchestrator(config, store).run_if_due()
    if run is None:
        return _response(200, {'skipped': True, 'message': 'Next cycle is not due yet'})
    return _response(200, run.to_dict())


def fit_to_invocation(config: PipelineConfig, context: Any) -> PipelineConfig:
    """Shrink the facility timeout so a cycle and its summary fit in the remaining invocation time."""
    get_remaining = getattr(context, 'get_remaining_time_in_millis', None)
    if get_remaining is None:
        return config

    budget = get_remaining() / 1000 - SUMMARY_RESERVE_SECONDS
    if budget >= config.facility_timeout_seconds:
        return config

    logger.warning(
        f"Facility timeout lowered to {max(budget, 1.0):.0f} seconds to fit the invocation",
        extra={'configured_timeout_seconds': config.facility_timeout_seconds}
    )
    return replace(config, facility_timeout_seconds=max(budget, 1.0))


def scrape_facility(config: PipelineConfig, store: DynamoDBManager, facility_id: str) -> Dict[str, Any]:
    try:
        facility = get_facility(facility_id)
    except UnknownFacility as e:
        return _response(404, {'error': str(e)})

    result = build_pipeline(config, store).run(
        facility,
        timeout_seconds=config.facility_timeout_seconds
    )
    return _response(200 if result.success else 502, result.to_dict())


def get_status(store: DynamoDBManager) -> Dict[str, Any]:
    run = store.get_scheduler_run()
    if run is None:
        return _response(404, {'error': 'No scheduler run recorded yet'})
    return _response(200, run.to_dict())


def serve_data(
    config: PipelineConfig,
    store: DynamoDBManager,
    path: str
) -> Optional[Dict[str, Any]]:
    """
    Answer a read-only data route.

    Failed or empty facilities produce an empty list or a "no data" record,
    never an HTTP error.

    Returns:
        Response dict, or None when the path is not a data route
    """
    if path == '/api/all-events':
        try:
            events = store.get_all_events()
        except ClientError as e:
            logger.error(f"Failed to read events: {e}")
            events = {}
        return _response(200, {
            facility_id: [event.to_dict() for event in facility_events]
            for facility_id, facility_events in events.items()
        })

    if path == '/api/all-metadata':
        return _response(200, {
            facility_id: _read_metadata(store, facility_id).to_dict()
            for facility_id in config.facility_ids
        })

    match = DATA_ROUTE.match(path)
    if not match:
        return None

    facility_id = match.group('facility_id')
    if match.group('metadata'):
        return _response(200, _read_metadata(store, facility_id).to_dict())

    try:
        events = store.get_events(facility_id)
    except ClientError as e:
        logger.error(f"Failed to read events for {facility_id}: {e}")
        events = []
    return _response(200, [event.to_dict() for event in events])


def _read_metadata(store: DynamoDBManager, facility_id: str) -> FacilityMetadata:
    try:
        metadata = store.get_metadata(facility_id)
    except ClientError as e:
        logger.error(f"Failed to read metadata for {facility_id}: {e}")
        metadata = FacilityMetadata.no_data(facility_id, utc_now())

    facility = FACILITY_CATALOG.get(facility_id)
    if facility is not None and not metadata.source_url:
        metadata.display_name = facility.display_name
        metadata.facility_name = facility.facility_name
        metadata.source_url = facility.source_url
    return metadata


def route(
    config: PipelineConfig,
    store: DynamoDBManager,
    request: Optional[Tuple[str, str]]
) -> Dict[str, Any]:
    """Dispatch a scheduled invocation or an HTTP request to its handler."""
    if request is None:
        return run_scheduled(config, store)

    method, path = request
    path = path.rstrip('/') or '/'

    if path == '/trigger' and method in ('GET', 'POST'):
        return run_cycle(config, store)

    if path == '/status' and method == 'GET':
        return get_status(store)

    scrape_match = SCRAPE_ROUTE.match(path)
    if scrape_match and method == 'POST':
        return scrape_facility(config, store, scrape_match.group('facility_id'))

    if method == 'GET':
        response = serve_data(config, store, path)
        if response is not None:
            return response

    return _response(404, {'error': f"No route for {method} {path}", 'endpoints': ENDPOINTS})


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler.

    EventBridge events run a splayed cycle once the previous run's next
    scheduled time has passed; HTTP events are routed to the trigger,
    status, scrape and data endpoints.

    Args:
        event: EventBridge or API Gateway / function URL payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    start_time = time.time()

    try:
        config = PipelineConfig.from_env()
    except (ValueError, UnknownFacility) as e:
        setup_logging()
        return _error_response(e, 'Invalid configuration', start_time)

    setup_logging(config.log_level)
    config = fit_to_invocation(config, context)
    request = _request_line(event or {})
    logger.info(
        "Lambda execution started",
        extra={
            'table_name': config.table_name,
            'route': ' '.join(request) if request else 'scheduled'
        }
    )

    try:
        store = DynamoDBManager(table_name=config.table_name)
        response = route(config, store, request)
    except Exception as e:
        return _error_response(e, 'Request failed', start_time)

    logger.info(
        "Lambda execution completed successfully",
        extra={
            'status_code': response['statusCode'],
            'duration_seconds': round(time.time() - start_time, 2)
        }
    )
    return response
