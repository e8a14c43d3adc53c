"""
Table stream Lambda handler.

This handler consumes the RSVP table's DynamoDB stream and publishes a change event
to EventBridge for every Guest and RSVP Response write. Records whose events
EventBridge rejects are returned as batch item failures so the stream redelivers
them; an exception fails the whole batch, which is then retried.

Follows steering rules:
- One handler per file
- Configuration read once at startup
- Validate env vars on boot
"""

from typing import Dict, Any, List

from rsvp_shared.change_events import ChangeEventPublisher, to_change_event
from rsvp_shared.config import load_config
from rsvp_shared.logger import create_logger


config = load_config(['EVENT_BUS_NAME'], {})

publisher = ChangeEventPublisher(config['event_bus_name'])


def handler(event: Dict[str, Any], context: Any) -> Dict[str, List[Dict[str, str]]]:
    """
    Lambda handler for DynamoDB stream batches.

    Args:
        event: DynamoDB stream event ({"Records": [...]})
        context: Lambda context object

    Returns:
        Partial batch response ({"batchItemFailures": [{"itemIdentifier": ...}]})
    """
    logger = create_logger(event, operation='rsvp-stream-publish')
    records = event.get('Records') or []

    try:
        changes = [change for change in map(to_change_event, records) if change]
        failed = publisher.publish(changes)
    except Exception as error:
        logger.log_unexpected_error(error_type=type(error).__name__, error_message=str(error))
        logger.publish_metrics()
        raise

    logger.metrics.emit_count('ChangeEventsPublished', len(changes) - len(failed))
    if failed:
        logger.metrics.emit_count('ChangeEventsFailed', len(failed))
    logger.log_info(
        'stream_batch_processed',
        records=len(records),
        published=len(changes) - len(failed),
        failed=len(failed)
    )
    logger.publish_metrics()

    return {
        'batchItemFailures': [{'itemIdentifier': change['sequenceNumber']} for change in failed]
    }
