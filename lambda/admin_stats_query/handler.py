"""
Admin statistics Lambda handler.

This handler implements GET /admin/stats for the configured event. Requires an
admin bearer token.

Follows steering rules:
- One handler per file
- Business logic in services, not handlers
- Configuration read once at startup
- Validate env vars on boot
- Log request lifecycle with correlation ID
"""

from typing import Dict, Any

from rsvp_shared.admin_query import AdminQueryService
from rsvp_shared.auth import verify_admin_token
from rsvp_shared.config import DEFAULTS, load_config
from rsvp_shared.errors import DomainError
from rsvp_shared.gateway import StorageGateway
from rsvp_shared.logger import create_logger
from rsvp_shared.responses import (
    create_domain_error_response,
    create_success_response,
    create_unavailable_response,
)


config = load_config(['TABLE_NAME', 'EVENT_ID', 'ADMIN_JWT_SECRET'], DEFAULTS)

gateway = StorageGateway(config['table_name'], config['storage_timeout_seconds'])
admin_query_service = AdminQueryService(gateway)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for admin statistics.

    Response codes:
        200: Statistics
        401: Missing or invalid admin token
        503: Storage unavailable
    """
    logger = create_logger(event, operation='admin-stats-query')
    logger.log_request_start(
        path=event.get('path', '/admin/stats'),
        method=event.get('httpMethod', 'GET')
    )

    try:
        verify_admin_token(event.get('headers'), config['admin_jwt_secret'])

        stats = admin_query_service.stats(config['event_id'])

        logger.log_request_complete(status_code=200, totalInvited=stats['totalInvited'])
        logger.publish_metrics()
        return create_success_response(200, stats)

    except DomainError as error:
        logger.log_domain_error(error_code=error.code, error_message=error.message)
        logger.publish_metrics()
        return create_domain_error_response(error)

    except Exception as error:
        logger.log_unexpected_error(error_type=type(error).__name__, error_message=str(error))
        logger.publish_metrics()
        return create_unavailable_response()
