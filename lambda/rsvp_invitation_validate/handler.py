"""
Invitation validation Lambda handler.

This handler implements POST /validate-invitation. It follows the Lambda-per-operation
pattern with clear separation of concerns:
- Handler: Parse request, validate input, map errors to HTTP responses
- Service: Code lookup and usage checks (rsvp_shared.invitations)

Checking a code never consumes a use, so guests may check as often as they like.
An unusable code is a normal 200 response with valid=false and a message.

Follows steering rules:
- One handler per file
- Business logic in services, not handlers
- Configuration read once at startup
- Validate env vars on boot
- Log request lifecycle with correlation ID
"""

from typing import Dict, Any

from rsvp_shared.config import DEFAULTS, load_config
from rsvp_shared.errors import DomainError
from rsvp_shared.gateway import StorageGateway
from rsvp_shared.invitations import InvitationValidator
from rsvp_shared.logger import create_logger
from rsvp_shared.responses import (
    create_domain_error_response,
    create_error_response,
    create_success_response,
    create_unavailable_response,
)
from rsvp_shared.validation import parse_json_body, validate_invitation_request


# Load configuration at module initialization (cold start)
# This will fail fast if configuration is invalid
config = load_config(['TABLE_NAME'], DEFAULTS)

# Initialize services once at cold start
gateway = StorageGateway(config['table_name'], config['storage_timeout_seconds'])
invitation_validator = InvitationValidator(gateway, config['max_plus_ones'])


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for invitation code validation.

    Args:
        event: API Gateway Lambda proxy integration event
        context: Lambda context object

    Returns:
        API Gateway Lambda proxy integration response

    Response codes:
        200: Check completed ({valid: true, guest} or {valid: false, reason, message})
        400: Validation error (missing code, invalid JSON)
        503: Storage unavailable
    """
    logger = create_logger(event, operation='rsvp-invitation-validate')
    logger.log_request_start(
        path=event.get('path', '/validate-invitation'),
        method=event.get('httpMethod', 'POST')
    )

    try:
        request = parse_json_body(event)

        validation_errors = validate_invitation_request(request)
        if validation_errors:
            logger.log_validation_error(errors=validation_errors)
            logger.publish_metrics()
            return create_error_response(
                400,
                'VALIDATION_ERROR',
                'Invalid request data',
                {'errors': validation_errors}
            )

        check = invitation_validator.validate(request['code'])

        if check['valid']:
            guest = check['guest']
            body = {
                'valid': True,
                'guest': {
                    'email': guest['email'],
                    'name': guest['name'],
                    'invitationCode': guest['invitationCode'],
                    'maxGuests': guest['maxGuests'],
                    'rsvpStatus': guest['rsvpStatus'],
                },
            }
        else:
            logger.metrics.emit_count(
                'InvitationRejected',
                dimensions=[{'Name': 'Reason', 'Value': check['reason']}]
            )
            body = {'valid': False, 'reason': check['reason'], 'message': check['message']}

        logger.log_request_complete(status_code=200, valid=check['valid'], reason=check.get('reason'))
        logger.publish_metrics()
        return create_success_response(200, body)

    except DomainError as error:
        logger.log_domain_error(error_code=error.code, error_message=error.message)
        logger.publish_metrics()
        return create_domain_error_response(error)

    except Exception as error:
        # Do not expose internal details to client
        logger.log_unexpected_error(error_type=type(error).__name__, error_message=str(error))
        logger.publish_metrics()
        return create_unavailable_response()
