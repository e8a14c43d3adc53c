"""
Admin guest listing Lambda handler.

This handler implements GET /admin/guests with optional status filter, search,
sort and pagination (query string: status, search, sortBy, order, limit, nextToken).
Requires an admin bearer token.

Follows steering rules:
- One handler per file
- Business logic in services, not handlers
- Fail fast on invalid input
- Configuration read once at startup
- Log request lifecycle with correlation ID
"""

from typing import Dict, Any

from rsvp_shared.admin_query import DEFAULT_PAGE_SIZE, AdminQueryService
from rsvp_shared.auth import verify_admin_token
from rsvp_shared.config import DEFAULTS, load_config
from rsvp_shared.errors import DomainError
from rsvp_shared.gateway import StorageGateway
from rsvp_shared.logger import create_logger
from rsvp_shared.responses import (
    create_domain_error_response,
    create_error_response,
    create_success_response,
    create_unavailable_response,
)
from rsvp_shared.validation import validate_list_query


config = load_config(['TABLE_NAME', 'EVENT_ID', 'ADMIN_JWT_SECRET'], DEFAULTS)

gateway = StorageGateway(config['table_name'], config['storage_timeout_seconds'])
admin_query_service = AdminQueryService(gateway)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for admin guest listing.

    Response codes:
        200: Page of guests
        400: Invalid query parameters
        401: Missing or invalid admin token
        503: Storage unavailable
    """
    logger = create_logger(event, operation='admin-guests-list')
    logger.log_request_start(
        path=event.get('path', '/admin/guests'),
        method=event.get('httpMethod', 'GET')
    )

    try:
        verify_admin_token(event.get('headers'), config['admin_jwt_secret'])

        params = event.get('queryStringParameters') or {}
        validation_errors = validate_list_query(params)
        if validation_errors:
            logger.log_validation_error(errors=validation_errors)
            logger.publish_metrics()
            return create_error_response(
                400,
                'VALIDATION_ERROR',
                'Invalid query parameters',
                {'errors': validation_errors}
            )

        result = admin_query_service.list_guests(
            config['event_id'],
            status=params.get('status'),
            search=params.get('search'),
            sort_by=params.get('sortBy', 'name'),
            descending=params.get('order') == 'desc',
            limit=int(params.get('limit', DEFAULT_PAGE_SIZE)),
            next_token=params.get('nextToken')
        )

        logger.log_request_complete(status_code=200, count=result['count'])
        logger.publish_metrics()
        return create_success_response(200, result)

    except DomainError as error:
        logger.log_domain_error(error_code=error.code, error_message=error.message)
        logger.publish_metrics()
        return create_domain_error_response(error)

    except Exception as error:
        logger.log_unexpected_error(error_type=type(error).__name__, error_message=str(error))
        logger.publish_metrics()
        return create_unavailable_response()
