"""
Change events for the notification dispatcher.

Every committed Guest or RSVP Response write reaches the table's stream. This module
turns those stream records into change events and publishes them to EventBridge,
where the external notification dispatcher consumes them.

Delivery is at-least-once: a record whose publication fails is reported back to the
stream, which redelivers it. Each event carries the stream's eventID so the
dispatcher can discard duplicates.
"""

import json
import logging
from typing import Dict, Any, List, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer

from rsvp_shared.gateway import from_dynamo
from rsvp_shared.keys import ENTITY_GUEST, ENTITY_RSVP_RESPONSE, GUEST_PREFIX, RSVP_PREFIX
from rsvp_shared.types import ChangeEvent


logger = logging.getLogger(__name__)

EVENT_SOURCE = 'wedding-rsvp.table'
DETAIL_TYPE = 'RsvpChangeEvent'

# EventBridge PutEvents limit
BATCH_SIZE = 10

PUBLISHED_EVENT_NAMES = ('INSERT', 'MODIFY')

_deserializer = TypeDeserializer()


def _deserialize(image: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not image:
        return {}
    return from_dynamo({k: _deserializer.deserialize(v) for k, v in image.items()})


def _entity_of(keys: Dict[str, Any], image: Dict[str, Any]) -> Optional[str]:
    entity = image.get('EntityType')
    if entity:
        return entity
    sort_key = keys.get('SK') or ''
    if sort_key.startswith(GUEST_PREFIX):
        return ENTITY_GUEST
    if sort_key.startswith(RSVP_PREFIX):
        return ENTITY_RSVP_RESPONSE
    return None


def to_change_event(record: Dict[str, Any]) -> Optional[ChangeEvent]:
    """
    Convert one DynamoDB stream record into a change event.

    Returns None for records that are not published: removals, and writes to
    rows other than guests and RSVP responses.
    """
    event_name = record.get('eventName')
    if event_name not in PUBLISHED_EVENT_NAMES:
        return None

    stream_record = record.get('dynamodb') or {}
    keys = _deserialize(stream_record.get('Keys'))
    new_image = _deserialize(stream_record.get('NewImage'))
    if not new_image:
        logger.warning('Stream record %s has no new image; check the stream view type',
                       record.get('eventID'))
        return None

    entity = _entity_of(keys, new_image)
    if entity not in (ENTITY_GUEST, ENTITY_RSVP_RESPONSE):
        return None

    return {
        'eventId': record.get('eventID', ''),
        'sequenceNumber': stream_record.get('SequenceNumber', ''),
        'eventName': event_name,
        'entity': entity,
        'keys': {'PK': keys.get('PK'), 'SK': keys.get('SK')},
        'newImage': new_image,
    }


class ChangeEventPublisher:
    """Publishes change events to an EventBridge bus in batches of 10."""

    def __init__(self, event_bus_name: str, eventbridge: Any = None):
        """
        Initialize the publisher.

        Args:
            event_bus_name: Name of the EventBridge bus
            eventbridge: Pre-built EventBridge client (tests inject a stub)
        """
        self.event_bus_name = event_bus_name
        self.eventbridge = eventbridge or boto3.client('events')

    def publish(self, events: List[ChangeEvent]) -> List[ChangeEvent]:
        """
        Publish change events.

        Args:
            events: Events to publish, in stream order

        Returns:
            The events EventBridge rejected (empty when all were accepted)
        """
        failed: List[ChangeEvent] = []
        for start in range(0, len(events), BATCH_SIZE):
            batch = events[start:start + BATCH_SIZE]
            response = self.eventbridge.put_events(Entries=[
                {
                    'Source': EVENT_SOURCE,
                    'DetailType': DETAIL_TYPE,
                    'Detail': json.dumps(event, default=str),
                    'EventBusName': self.event_bus_name,
                }
                for event in batch
            ])
            if not response.get('FailedEntryCount'):
                continue
            # Result entries line up with request entries
            for event, entry in zip(batch, response.get('Entries', [])):
                if entry.get('ErrorCode'):
                    logger.warning('Change event %s rejected: %s %s',
                                   event['eventId'], entry.get('ErrorCode'), entry.get('ErrorMessage'))
                    failed.append(event)
        return failed
