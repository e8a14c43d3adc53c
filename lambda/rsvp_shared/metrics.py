"""
CloudWatch metrics utility for Lambda handlers.

This module emits custom CloudWatch metrics for request count, error rate and
latency, plus business counters such as RSVPs recorded, across all RSVP handlers.

Follows steering rules:
- Explicit over implicit
- Fail fast on invalid input
- No global mutable state
"""

import boto3
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List


# Metric namespace for all wedding RSVP metrics
METRIC_NAMESPACE = 'WeddingRsvp'

# CloudWatch PutMetricData limit
BATCH_SIZE = 20


class MetricsClient:
    """
    CloudWatch metrics client for Lambda handlers.

    Metrics are buffered and sent in one publish() call at the end of a request.

    Usage:
        metrics = MetricsClient(operation='rsvp-response-submit')
        metrics.emit_request_count()
        metrics.emit_count('RsvpRecorded', dimensions=[{'Name': 'Status', 'Value': 'attending'}])
        metrics.publish()
    """

    def __init__(self, operation: str, cloudwatch: Any = None):
        """
        Initialize the metrics client.

        Args:
            operation: Operation name (e.g., 'rsvp-response-submit')
            cloudwatch: Pre-built CloudWatch client; created on first publish otherwise
        """
        if not operation or not operation.strip():
            raise ValueError('Operation name is required for metrics')

        self.operation = operation
        self._cloudwatch = cloudwatch
        self._metric_data: List[Dict[str, Any]] = []

    @property
    def cloudwatch(self) -> Any:
        if self._cloudwatch is None:
            self._cloudwatch = boto3.client('cloudwatch')
        return self._cloudwatch

    def _add_metric(
        self,
        metric_name: str,
        value: float,
        unit: str,
        dimensions: Optional[List[Dict[str, str]]] = None
    ) -> None:
        all_dimensions = [{'Name': 'Operation', 'Value': self.operation}]
        if dimensions:
            all_dimensions.extend(dimensions)

        self._metric_data.append({
            'MetricName': metric_name,
            'Value': value,
            'Unit': unit,
            'Timestamp': datetime.now(timezone.utc),
            'Dimensions': all_dimensions
        })

    def emit_request_count(self, count: int = 1) -> None:
        """Emit the RequestCount metric."""
        self._add_metric('RequestCount', float(count), 'Count')

    def emit_error(self, error_code: Optional[str] = None) -> None:
        """
        Emit error metric.

        Args:
            error_code: Error code (e.g., 'VALIDATION_ERROR', 'CONFLICT') added as a dimension
        """
        dimensions = [{'Name': 'ErrorCode', 'Value': error_code}] if error_code else None
        self._add_metric('ErrorCount', 1.0, 'Count', dimensions)

    def emit_latency(self, latency_ms: int) -> None:
        """
        Emit latency metric.

        Args:
            latency_ms: Latency in milliseconds

        Raises:
            ValueError: If latency is negative
        """
        if latency_ms < 0:
            raise ValueError('Latency must be non-negative')
        self._add_metric('Latency', float(latency_ms), 'Milliseconds')

    def emit_count(
        self,
        metric_name: str,
        count: int = 1,
        dimensions: Optional[List[Dict[str, str]]] = None
    ) -> None:
        """
        Emit a business counter (e.g., RsvpRecorded, InvitationRejected).

        Args:
            metric_name: Name of the metric
            count: Amount to add
            dimensions: Additional dimensions (optional)
        """
        self._add_metric(metric_name, float(count), 'Count', dimensions)

    def publish(self) -> None:
        """
        Publish all accumulated metrics to CloudWatch in batches of 20.

        A publishing failure is printed and dropped; metrics never fail a request.
        """
        if not self._metric_data:
            return

        try:
            for i in range(0, len(self._metric_data), BATCH_SIZE):
                self.cloudwatch.put_metric_data(
                    Namespace=METRIC_NAMESPACE,
                    MetricData=self._metric_data[i:i + BATCH_SIZE]
                )
        except Exception as error:
            print(f'Failed to publish metrics: {error}')
        finally:
            self._metric_data = []


def create_metrics_client(operation: str) -> MetricsClient:
    """
    Create a metrics client for a Lambda operation.

    Args:
        operation: Operation name (e.g., 'admin-stats-query')

    Returns:
        MetricsClient instance
    """
    return MetricsClient(operation)
