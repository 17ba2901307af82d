"""AWS Lambda handler for the Humanitix events importer."""
import json
import logging
import time
import uuid
from typing import Dict, Any

from humanitix.api_client import HumanitixClient
from importer.config import ConfigurationError, ImporterSettings, ImportOptions
from importer.memory import MemoryProbe
from importer.orchestrator import ImportAbortedError, ImportOrchestrator
from storage.dynamodb_manager import DynamoDBManager
from storage.media_store import MediaStore


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, merging any structured context."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        context = getattr(record, 'context', None)
        if isinstance(context, dict):
            log_data['context'] = context

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


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body, default=str)}


def build_orchestrator(settings: ImporterSettings, store: DynamoDBManager) -> ImportOrchestrator:
    """
    Wire the orchestrator and its collaborators from settings.

    Args:
        settings: Validated importer settings
        store: Local datastore

    Returns:
        ImportOrchestrator
    """
    client = HumanitixClient(
        api_key=settings.api_key,
        base_url=settings.api_endpoint,
        org_id=settings.org_id,
        timeout=settings.timeout_seconds
    )
    media_store = None
    if settings.media_bucket:
        media_store = MediaStore(settings.media_bucket, timeout=settings.timeout_seconds)

    return ImportOrchestrator(
        client=client,
        store=store,
        memory_probe=MemoryProbe(settings.memory_limit_mb, settings.memory_target_mb),
        batch_size=settings.batch_size,
        media_store=media_store
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler for the Humanitix events importer.

    Scheduled (EventBridge) and on-demand invocations run a full import.
    A payload of ``{"action": "import_event", "external_id": ...}`` imports
    a single event. ``options`` in the payload override the environment
    defaults for this run.

    Args:
        event: EventBridge or direct invocation payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and the run summary
    """
    event = event or {}
    start_time = time.time()

    try:
        settings = ImporterSettings.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error(f"Invalid configuration: {e}")
        return _response(500, {'message': 'Invalid configuration', 'error': str(e)})

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    logger.info(
        'Lambda execution started',
        extra={'context': {
            'table_name': settings.table_name,
            'action': event.get('action', 'import'),
            'media_bucket': settings.media_bucket or None
        }}
    )

    try:
        settings.validate()
        options = ImportOptions.from_payload(event.get('options'), settings)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return _response(500, {'message': 'Invalid configuration', 'error': str(e)})

    store = DynamoDBManager(table_name=settings.table_name)
    owner = getattr(context, 'aws_request_id', None) or uuid.uuid4().hex

    try:
        if not store.acquire_lock(owner):
            return _response(409, {'message': 'Another import is already running'})
    except Exception as e:
        logger.error(f"Could not acquire import lock: {e}", exc_info=True)
        return _response(500, {'message': 'Import failed', 'error': str(e)})

    try:
        orchestrator = build_orchestrator(settings, store)

        if event.get('action') == 'import_event':
            external_id = str(event.get('external_id') or '').strip()
            if not external_id:
                return _response(400, {'message': 'external_id is required for import_event'})
            result = orchestrator.import_one(external_id, options)
        else:
            result = orchestrator.run(options)

    except ImportAbortedError as e:
        duration = time.time() - start_time
        logger.error(f"Import aborted: {e}")
        return _response(500, {
            'message': 'Import aborted',
            'error': str(e),
            'duration_seconds': round(duration, 2)
        })

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'context': {
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            }},
            exc_info=True
        )
        return _response(500, {
            'message': 'Import failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

    finally:
        try:
            store.release_lock(owner)
        except Exception as e:
            logger.error(f"Could not release import lock: {e}")

    logger.info(
        'Lambda execution completed',
        extra={'context': {'duration_seconds': round(time.time() - start_time, 2)}}
    )

    message = 'Import completed'
    if result.aborted_reason:
        message = f"Import stopped early: {result.aborted_reason}"

    return _response(200, {'message': message, 'statistics': result.to_summary()})
