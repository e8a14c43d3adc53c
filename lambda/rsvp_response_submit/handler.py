"""
RSVP submission Lambda handler.

This handler implements POST /submit-rsvp. It follows the Lambda-per-operation
pattern with clear separation of concerns:
- Handler: Parse request, validate input, map errors to HTTP responses
- Services: Invitation checks (rsvp_shared.invitations) and history/projection
  writes (rsvp_shared.rsvp_writer)

Every submission appends history; resubmitting the same payload converges on the
same current status.

Follows steering rules:
- One handler per file
- Business logic in services, not handlers
- Fail fast on invalid input
- Configuration read once at startup
- Validate env vars on boot
- Log request lifecycle with correlation ID
"""

from typing import Dict, Any

from rsvp_shared.config import DEFAULTS, load_config
from rsvp_shared.errors import ConflictError, DomainError, NotFoundError, ValidationError
from rsvp_shared.gateway import StorageGateway
from rsvp_shared.groups import GroupCoordinator
from rsvp_shared.invitations import InvitationValidator
from rsvp_shared.logger import create_logger
from rsvp_shared.responses import (
    create_domain_error_response,
    create_error_response,
    create_success_response,
    create_unavailable_response,
)
from rsvp_shared.rsvp_writer import RsvpWriter
from rsvp_shared.validation import parse_json_body, validate_submit_request


# Load configuration at module initialization (cold start)
config = load_config(['TABLE_NAME'], DEFAULTS)

# Initialize services once at cold start
gateway = StorageGateway(config['table_name'], config['storage_timeout_seconds'])
invitation_validator = InvitationValidator(gateway, config['max_plus_ones'])
rsvp_writer = RsvpWriter(
    gateway,
    group_coordinator=GroupCoordinator(gateway),
    invitation_validator=invitation_validator,
    max_plus_ones=config['max_plus_ones'],
    max_retries=config['rsvp_max_retries']
)


def _invalid_code_error(check: Dict[str, Any]) -> DomainError:
    reason = check['reason']
    details = {'reason': reason}
    if reason == 'malformed':
        return ValidationError(check['message'], details)
    if reason == 'not_found':
        return NotFoundError(check['message'], details)
    return ConflictError(check['message'], details, code='INVITATION_UNUSABLE')


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for RSVP submission.

    Request flow:
    1. Parse and validate the request body
    2. Check the invitation code (no use consumed yet)
    3. Delegate to the RSVP writer, which consumes the use and records the response
    4. Map domain errors to HTTP responses

    Args:
        event: API Gateway Lambda proxy integration event
        context: Lambda context object

    Returns:
        API Gateway Lambda proxy integration response

    Response codes:
        201: RSVP recorded
        400: Validation error (bad payload, too many attendees, deadline passed)
        404: Unknown invitation code or guest
        409: Invitation unusable (exhausted, inactive, expired) or retry budget spent
        503: Storage unavailable
    """
    logger = create_logger(event, operation='rsvp-response-submit')
    logger.log_request_start(
        path=event.get('path', '/submit-rsvp'),
        method=event.get('httpMethod', 'POST')
    )

    try:
        request = parse_json_body(event)

        validation_errors = validate_submit_request(request, config['max_plus_ones'])
        if validation_errors:
            logger.log_validation_error(errors=validation_errors)
            logger.publish_metrics()
            return create_error_response(
                400,
                'VALIDATION_ERROR',
                'Invalid request data',
                {'errors': validation_errors}
            )

        check = invitation_validator.validate(request['invitationCode'])
        if not check['valid']:
            raise _invalid_code_error(check)

        guest = check['guest']
        request_context = event.get('requestContext') or {}
        headers = {k.lower(): v for k, v in (event.get('headers') or {}).items()}

        result = rsvp_writer.submit(
            email=guest['email'],
            event_id=guest['eventId'],
            status=request['status'],
            attendees=request.get('attendees') or [{'name': guest['name']}],
            dietary_notes=request.get('dietaryNotes'),
            special_requests=request.get('specialRequests'),
            method='web',
            invitation_code=guest['invitationCode'],
            ip_address=(request_context.get('identity') or {}).get('sourceIp'),
            user_agent=headers.get('user-agent')
        )

        logger.metrics.emit_count(
            'RsvpRecorded',
            dimensions=[{'Name': 'Status', 'Value': request['status']}]
        )
        logger.log_request_complete(
            status_code=201,
            rsvpId=result['rsvpId'],
            currentStatus=result['currentStatus']
        )
        logger.publish_metrics()
        return create_success_response(201, result)

    except DomainError as error:
        logger.log_domain_error(error_code=error.code, error_message=error.message)
        logger.publish_metrics()
        return create_domain_error_response(error)

    except Exception as error:
        # Do not expose internal details to client
        logger.log_unexpected_error(error_type=type(error).__name__, error_message=str(error))
        logger.publish_metrics()
        return create_unavailable_response()
