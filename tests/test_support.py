"""
Unit tests for handler support modules: configuration, responses, logging and metrics.
"""

import importlib
import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from rsvp_shared import responses
from rsvp_shared.config import load_config
from rsvp_shared.errors import (
    ConflictError,
    DomainError,
    NotFoundError,
    UnavailableError,
    VersionMismatchError,
)
from rsvp_shared.logger import create_logger, sanitize
from rsvp_shared.metrics import MetricsClient
from rsvp_shared.responses import (
    UNAVAILABLE_MESSAGE,
    create_domain_error_response,
    create_success_response,
    create_unavailable_response,
)


class TestLoadConfig:
    """Tests for environment configuration."""

    def test_required_and_defaults(self, monkeypatch):
        monkeypatch.setenv('TABLE_NAME', 'rsvp-table')
        for var in ('MAX_PLUS_ONES', 'RSVP_MAX_RETRIES', 'STORAGE_TIMEOUT_SECONDS'):
            monkeypatch.delenv(var, raising=False)

        config = load_config(['TABLE_NAME'])

        assert config == {'table_name': 'rsvp-table', 'max_plus_ones': 5, 'rsvp_max_retries': 3,
                          'storage_timeout_seconds': 3.0}

    def test_numbers_take_the_default_type(self, monkeypatch):
        monkeypatch.setenv('MAX_PLUS_ONES', '2')
        monkeypatch.setenv('STORAGE_TIMEOUT_SECONDS', '1.5')

        config = load_config([], {'MAX_PLUS_ONES': 5, 'STORAGE_TIMEOUT_SECONDS': 3.0})

        assert config['max_plus_ones'] == 2
        assert config['storage_timeout_seconds'] == 1.5

    def test_missing_required(self, monkeypatch):
        monkeypatch.delenv('TABLE_NAME', raising=False)
        monkeypatch.setenv('EVENT_ID', '')

        with pytest.raises(ValueError) as exc_info:
            load_config(['TABLE_NAME', 'EVENT_ID'], {})
        assert 'TABLE_NAME, EVENT_ID' in str(exc_info.value)

    def test_non_numeric_value(self, monkeypatch):
        monkeypatch.setenv('RSVP_MAX_RETRIES', 'many')

        with pytest.raises(ValueError):
            load_config([], {'RSVP_MAX_RETRIES': 3})


class TestResponses:
    """Tests for HTTP response helpers."""

    def test_success_serializes_decimals_and_sets(self, monkeypatch):
        monkeypatch.setattr(responses, 'CORS_ORIGIN', '*')

        response = create_success_response(200, {'uses': Decimal('2'), 'rate': Decimal('0.5'),
                                                 'tags': {'b', 'a'}})

        assert response['statusCode'] == 200
        assert response['headers']['Access-Control-Allow-Origin'] == '*'
        assert json.loads(response['body']) == {'uses': 2, 'rate': 0.5, 'tags': ['a', 'b']}

    def test_cors_origin_is_read_once_at_import(self, monkeypatch):
        monkeypatch.setattr(responses, 'CORS_ORIGIN', responses.CORS_ORIGIN)
        monkeypatch.setenv('CORS_ORIGIN', 'https://wedding.example.com')
        reloaded = importlib.reload(responses)
        monkeypatch.setenv('CORS_ORIGIN', 'https://other.example.com')

        response = reloaded.create_success_response(200, {})

        assert response['headers']['Access-Control-Allow-Origin'] == 'https://wedding.example.com'

    @pytest.mark.parametrize('error,status_code', [
        (NotFoundError('Guest not found', {'email': 'jane@example.com'}), 404),
        (ConflictError('Guest already exists'), 409),
        (VersionMismatchError('Guest was modified', 2, 3), 409),
        (ConflictError('Invitation code is exhausted', code='INVITATION_UNUSABLE'), 409),
        (DomainError('SOMETHING_NEW', 'unmapped'), 503),
    ])
    def test_domain_error_status(self, error, status_code):
        response = create_domain_error_response(error)

        body = json.loads(response['body'])
        assert response['statusCode'] == status_code
        assert body['code'] == error.code
        assert set(body) == {'code', 'message', 'details'}

    def test_storage_failure_message_is_not_sent(self):
        response = create_domain_error_response(
            UnavailableError('Storage timed out during update_item', outcome_unknown=True)
        )

        assert response['statusCode'] == 503
        assert json.loads(response['body']) == {
            'code': 'UNAVAILABLE', 'message': UNAVAILABLE_MESSAGE, 'details': {}
        }

    def test_unavailable_carries_no_detail(self):
        body = json.loads(create_unavailable_response()['body'])
        assert body == {'code': 'UNAVAILABLE', 'message': UNAVAILABLE_MESSAGE, 'details': {}}


class TestSanitize:
    """Tests for log redaction."""

    def test_redacts_nested_fields(self):
        data = {
            'email': 'jane@example.com',
            'Phone': '555-0100',
            'query': {'nextToken': 'abc', 'limit': 10},
            'guests': [{'phone': '555-0101', 'name': 'Jane'}],
        }

        assert sanitize(data) == {
            'email': 'jane@example.com',
            'Phone': '[REDACTED]',
            'query': {'nextToken': '[REDACTED]', 'limit': 10},
            'guests': [{'phone': '[REDACTED]', 'name': 'Jane'}],
        }

    def test_plain_values_pass_through(self):
        assert sanitize('text') == 'text'
        assert sanitize(None) is None


class TestStructuredLogger:
    """Tests for the request logger."""

    def test_correlation_id_from_request_context(self):
        logger = create_logger({'requestContext': {'requestId': 'req-1'}}, 'rsvp-status-get')
        assert logger.correlation_id == 'req-1'
        assert logger.operation == 'rsvp-status-get'

    def test_correlation_id_without_request_context(self):
        assert create_logger({'Records': []}, 'rsvp-stream-publish').correlation_id == 'unknown'

    def test_log_lines_are_redacted_json(self, capsys):
        logger = create_logger({'requestContext': {'requestId': 'req-1'}}, 'admin-guests-list')

        logger.log_request_start(path='/admin/guests', method='GET', nextToken='secret-cursor')

        entry = json.loads(capsys.readouterr().out)
        assert entry['event'] == 'request_start'
        assert entry['correlationId'] == 'req-1'
        assert entry['nextToken'] == '[REDACTED]'

    def test_lifecycle_records_metrics(self):
        logger = create_logger({}, 'admin-guests-update')
        logger.metrics = MetricsClient('admin-guests-update', cloudwatch=MagicMock())

        logger.log_domain_error('VERSION_MISMATCH', 'stale')
        logger.log_request_complete(status_code=409)

        names = [m['MetricName'] for m in logger.metrics._metric_data]
        assert names == ['ErrorCount', 'Latency', 'RequestCount', 'Latency']


class TestMetricsClient:
    """Tests for buffered CloudWatch metrics."""

    def test_operation_required(self):
        with pytest.raises(ValueError):
            MetricsClient('  ')

    def test_negative_latency(self):
        with pytest.raises(ValueError):
            MetricsClient('rsvp-status-get', cloudwatch=MagicMock()).emit_latency(-1)

    def test_dimensions(self):
        metrics = MetricsClient('rsvp-response-submit', cloudwatch=MagicMock())

        metrics.emit_count('RsvpRecorded', dimensions=[{'Name': 'Status', 'Value': 'attending'}])

        [datum] = metrics._metric_data
        assert datum['Dimensions'] == [
            {'Name': 'Operation', 'Value': 'rsvp-response-submit'},
            {'Name': 'Status', 'Value': 'attending'},
        ]

    def test_publish_in_batches_of_twenty(self):
        cloudwatch = MagicMock()
        metrics = MetricsClient('admin-stats-query', cloudwatch=cloudwatch)
        for _ in range(45):
            metrics.emit_request_count()

        metrics.publish()

        sizes = [len(call.kwargs['MetricData']) for call in cloudwatch.put_metric_data.call_args_list]
        assert sizes == [20, 20, 5]
        assert cloudwatch.put_metric_data.call_args.kwargs['Namespace'] == 'WeddingRsvp'
        assert metrics._metric_data == []

    def test_publish_failure_is_dropped(self):
        cloudwatch = MagicMock()
        cloudwatch.put_metric_data.side_effect = RuntimeError('throttled')
        metrics = MetricsClient('admin-stats-query', cloudwatch=cloudwatch)
        metrics.emit_error('CONFLICT')

        metrics.publish()

        assert metrics._metric_data == []

    def test_publish_nothing(self):
        cloudwatch = MagicMock()
        MetricsClient('admin-stats-query', cloudwatch=cloudwatch).publish()
        cloudwatch.put_metric_data.assert_not_called()
