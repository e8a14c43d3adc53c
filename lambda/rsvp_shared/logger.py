"""
Structured logging utility for Lambda handlers.

This module implements structured request logging with correlation IDs, latency
tracking and consistent JSON formatting across all RSVP handlers. Guest contact
details and admin credentials are redacted before anything is written.

Follows steering rules:
- Log request lifecycle with correlation ID
- Log errors with context (no sensitive data)
- Use consistent log format
"""

import json
import time
from datetime import datetime, timezone
from typing import Dict, Any

from rsvp_shared.metrics import create_metrics_client


# Field names that should never be logged (compared lowercased)
SENSITIVE_FIELDS = {
    'password',
    'token',
    'secret',
    'apikey',
    'api_key',
    'authorization',
    'auth',
    'credentials',
    'accesstoken',
    'access_token',
    'nexttoken',
    'phone',
    'ip_address',
    'ipaddress',
    'sourceip',
}


def sanitize(data: Any) -> Any:
    """
    Recursively replace sensitive fields with '[REDACTED]'.

    Args:
        data: Value that may contain sensitive fields

    Returns:
        Copy of the value with sensitive fields redacted
    """
    if isinstance(data, dict):
        return {
            key: '[REDACTED]' if str(key).lower() in SENSITIVE_FIELDS else sanitize(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize(item) for item in data]
    return data


class StructuredLogger:
    """
    Structured logger for Lambda handlers.

    Logs request lifecycle events as JSON lines and records request, error and
    latency metrics as a side effect.

    Usage:
        logger = StructuredLogger(correlation_id='abc-123', operation='rsvp-response-submit')
        logger.log_request_start(path='/rsvp', method='POST')
        # ... process request ...
        logger.log_request_complete(status_code=201, rsvpId='01HQ...')
        logger.publish_metrics()
    """

    def __init__(self, correlation_id: str, operation: str):
        """
        Initialize the structured logger.

        Args:
            correlation_id: Unique identifier for request tracing
            operation: Operation name for metrics (e.g., 'rsvp-response-submit')
        """
        self.correlation_id = correlation_id
        self.operation = operation
        self.start_time = time.time()
        self.metrics = create_metrics_client(operation)

    def _latency_ms(self) -> int:
        return int((time.time() - self.start_time) * 1000)

    def _log(self, event: str, **kwargs: Any) -> None:
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'correlationId': self.correlation_id,
            'operation': self.operation,
            'event': event,
            **sanitize(kwargs)
        }
        # Use print for CloudWatch Logs
        print(json.dumps(log_entry, default=str))

    def log_request_start(self, path: str, method: str, **additional_fields: Any) -> None:
        """
        Log request start event.

        Args:
            path: Request path (e.g., '/rsvp')
            method: HTTP method (e.g., 'POST', 'GET')
            **additional_fields: Additional fields to include in log
        """
        self._log('request_start', path=path, httpMethod=method, **additional_fields)

    def log_request_complete(self, status_code: int, **additional_fields: Any) -> None:
        """
        Log request completion with latency and emit request count and latency metrics.

        Args:
            status_code: HTTP status code (e.g., 200, 201)
            **additional_fields: Additional fields to include in log
        """
        latency_ms = self._latency_ms()
        self._log('request_complete', statusCode=status_code, latencyMs=latency_ms, **additional_fields)
        self.metrics.emit_request_count()
        self.metrics.emit_latency(latency_ms)

    def log_validation_error(self, errors: Any, **additional_fields: Any) -> None:
        """
        Log validation error event.

        Args:
            errors: Validation error details
            **additional_fields: Additional fields to include in log
        """
        self._log('validation_error', errors=errors, latencyMs=self._latency_ms(), **additional_fields)
        self.metrics.emit_error(error_code='VALIDATION_ERROR')

    def log_domain_error(self, error_code: str, error_message: str, **additional_fields: Any) -> None:
        """
        Log domain error event.

        Domain errors are expected business outcomes (unknown guest, exhausted code,
        lost version race). Also emits the error metric.

        Args:
            error_code: Error code (e.g., 'NOT_FOUND', 'CONFLICT')
            error_message: Human-readable error message
            **additional_fields: Additional fields to include in log
        """
        latency_ms = self._latency_ms()
        self._log(
            'domain_error',
            errorCode=error_code,
            errorMessage=error_message,
            latencyMs=latency_ms,
            **additional_fields
        )
        self.metrics.emit_error(error_code=error_code)
        self.metrics.emit_latency(latency_ms)

    def log_unexpected_error(self, error_type: str, error_message: str, **additional_fields: Any) -> None:
        """
        Log unexpected error event.

        Unexpected errors are system faults (storage outages, malformed stored data).
        The client only ever sees a generic UNAVAILABLE response for these.

        Args:
            error_type: Error type/class name
            error_message: Error message
            **additional_fields: Additional fields to include in log
        """
        latency_ms = self._latency_ms()
        self._log(
            'unexpected_error',
            errorType=error_type,
            errorMessage=error_message,
            latencyMs=latency_ms,
            **additional_fields
        )
        self.metrics.emit_error(error_code='UNAVAILABLE')
        self.metrics.emit_latency(latency_ms)

    def log_info(self, message: str, **additional_fields: Any) -> None:
        """
        Log informational event (e.g., rsvp_recorded, guest_created).

        Args:
            message: Informational message
            **additional_fields: Additional fields to include in log
        """
        self._log('info', message=message, **additional_fields)

    def publish_metrics(self) -> None:
        """Publish all accumulated metrics to CloudWatch; safe to call with none."""
        self.metrics.publish()


def create_logger(event: Dict[str, Any], operation: str) -> StructuredLogger:
    """
    Create a structured logger from a Lambda event.

    The correlation ID is the API Gateway request ID, or 'unknown' for events
    without a request context (e.g., stream batches).

    Args:
        event: Lambda event
        operation: Operation name for metrics (e.g., 'admin-stats-query')

    Returns:
        StructuredLogger instance
    """
    correlation_id = (event.get('requestContext') or {}).get('requestId', 'unknown')
    return StructuredLogger(correlation_id, operation)
