"""
Unit tests for the DynamoDB storage gateway.

The boto3 Table is replaced with a MagicMock; failures are raised as real botocore
exceptions so that error translation is exercised exactly as in production.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, ConnectTimeoutError, ReadTimeoutError

from rsvp_shared.errors import ConflictError, NotFoundError, UnavailableError, VersionMismatchError
from rsvp_shared.gateway import StorageGateway, from_dynamo, to_dynamo


def client_error(code, operation='UpdateItem', item=None):
    response = {'Error': {'Code': code, 'Message': code}}
    if item is not None:
        response['Item'] = item
    return ClientError(response, operation)


@pytest.fixture
def table():
    return MagicMock()


@pytest.fixture
def storage(table):
    return StorageGateway('rsvp-table', table=table)


class TestConversions:
    """Tests for number normalization at the storage boundary."""

    def test_decimals_become_ints_or_floats(self):
        assert from_dynamo({'a': Decimal('3'), 'b': Decimal('2.5'), 'c': [Decimal('1')]}) == {
            'a': 3, 'b': 2.5, 'c': [1]
        }

    def test_floats_become_decimals_and_bools_survive(self):
        assert to_dynamo({'rate': 0.5, 'flag': True, 'n': 2}) == {
            'rate': Decimal('0.5'), 'flag': True, 'n': 2
        }


class TestReads:
    """Tests for get_item and query."""

    def test_get_item_is_consistent(self, storage, table):
        table.get_item.return_value = {'Item': {'PK': 'A', 'SK': 'B', 'version': Decimal('2')}}

        item = storage.get_item('A', 'B')

        assert item == {'PK': 'A', 'SK': 'B', 'version': 2}
        table.get_item.assert_called_once_with(Key={'PK': 'A', 'SK': 'B'}, ConsistentRead=True)

    def test_get_item_missing_returns_none(self, storage, table):
        table.get_item.return_value = {}
        assert storage.get_item('A', 'B') is None

    def test_index_query_uses_index_attributes(self, storage, table):
        table.query.return_value = {'Items': [{'PK': 'EVENT#w', 'SK': 'GUEST#a'}]}

        storage.query('INVITATION#ABC123', index_name='InvitationCodeIndex', limit=1)

        params = table.query.call_args.kwargs
        assert params['IndexName'] == 'InvitationCodeIndex'
        assert params['ExpressionAttributeNames'] == {'#pk': 'InvitationCode'}
        assert params['Limit'] == 1
        assert 'ConsistentRead' not in params

    def test_query_follows_pages(self, storage, table):
        table.query.side_effect = [
            {'Items': [{'SK': 'GUEST#a'}], 'LastEvaluatedKey': {'PK': 'EVENT#w', 'SK': 'GUEST#a'}},
            {'Items': [{'SK': 'GUEST#b'}]},
        ]

        items = storage.query('EVENT#w', sk_prefix='GUEST#', newest_first=True)

        assert [i['SK'] for i in items] == ['GUEST#a', 'GUEST#b']
        second = table.query.call_args_list[1].kwargs
        assert second['ExclusiveStartKey'] == {'PK': 'EVENT#w', 'SK': 'GUEST#a'}
        assert second['ScanIndexForward'] is False
        assert second['KeyConditionExpression'] == '#pk = :pk AND begins_with(#sk, :sk)'
        assert second['ConsistentRead'] is True

    def test_query_sort_key_range(self, storage, table):
        table.query.return_value = {'Items': []}

        storage.query('EVENT#w', sk_between=('RSVP#a@b.co#2026-05-01', 'RSVP#a@b.co#~'))

        params = table.query.call_args.kwargs
        assert params['KeyConditionExpression'] == '#pk = :pk AND #sk BETWEEN :lo AND :hi'
        assert params['ExpressionAttributeValues'][':lo'] == 'RSVP#a@b.co#2026-05-01'
        assert params['ExpressionAttributeValues'][':hi'] == 'RSVP#a@b.co#~'


class TestWrites:
    """Tests for conditional puts and version-checked updates."""

    def test_put_with_condition_conflicts_on_existing_key(self, storage, table):
        table.put_item.side_effect = client_error('ConditionalCheckFailedException', 'PutItem')

        with pytest.raises(ConflictError):
            storage.put_item({'PK': 'A', 'SK': 'B'}, condition_not_exists=True)

        assert table.put_item.call_args.kwargs['ConditionExpression'] == 'attribute_not_exists(PK)'

    def test_update_builds_set_and_remove(self, storage, table):
        table.update_item.return_value = {'Attributes': {'PK': 'A', 'SK': 'B', 'version': Decimal('4')}}

        result = storage.update_item('A', 'B', {'rsvp_status': 'attending', 'notes': None}, expected_version=3)

        params = table.update_item.call_args.kwargs
        assert params['UpdateExpression'] == (
            'SET #a1 = :a1, #version = if_not_exists(#version, :zero) + :one REMOVE #a0'
        )
        assert params['ExpressionAttributeNames']['#a0'] == 'notes'
        assert params['ExpressionAttributeNames']['#a1'] == 'rsvp_status'
        assert params['ConditionExpression'] == 'attribute_exists(PK) AND #version = :expected'
        assert params['ExpressionAttributeValues'][':expected'] == 3
        assert result['version'] == 4

    def test_update_version_mismatch(self, storage, table):
        table.update_item.side_effect = client_error(
            'ConditionalCheckFailedException',
            item={'PK': {'S': 'A'}, 'SK': {'S': 'B'}, 'version': {'N': '5'}}
        )

        with pytest.raises(VersionMismatchError) as exc_info:
            storage.update_item('A', 'B', {'notes': 'x'}, expected_version=3)

        assert exc_info.value.actual_version == 5
        assert exc_info.value.code == 'VERSION_MISMATCH'

    def test_concurrent_updates_with_same_version(self, storage, table):
        """One of two writers holding version 1 wins; the other retries at version 2."""
        table.update_item.side_effect = [
            {'Attributes': {'PK': 'A', 'SK': 'B', 'version': Decimal('2')}},
            client_error('ConditionalCheckFailedException',
                         item={'PK': {'S': 'A'}, 'SK': {'S': 'B'}, 'version': {'N': '2'}}),
            {'Attributes': {'PK': 'A', 'SK': 'B', 'version': Decimal('3')}},
        ]

        assert storage.update_item('A', 'B', {'notes': 'first'}, expected_version=1)['version'] == 2
        with pytest.raises(VersionMismatchError) as exc_info:
            storage.update_item('A', 'B', {'notes': 'second'}, expected_version=1)
        retried = storage.update_item('A', 'B', {'notes': 'second'},
                                      expected_version=exc_info.value.actual_version)

        assert retried['version'] == 3
        assert table.update_item.call_args.kwargs['ExpressionAttributeValues'][':expected'] == 2

    def test_update_missing_item(self, storage, table):
        table.update_item.side_effect = client_error('ConditionalCheckFailedException')

        with pytest.raises(NotFoundError):
            storage.update_item('A', 'B', {'notes': 'x'})

    def test_increment_is_single_conditional_update(self, storage, table):
        table.update_item.return_value = {'Attributes': {'current_uses': Decimal('1')}}

        storage.increment_counter(
            'INVITATION#ABC123', 'METADATA', 'current_uses', 'max_uses',
            patch={'last_used_by': 'r1'}, guards={'is_active': True},
            set_if_missing={'first_used_at': 't'}
        )

        assert table.update_item.call_count == 1
        params = table.update_item.call_args.kwargs
        assert '#c < #max' in params['ConditionExpression']
        assert '#g0 = :g0' in params['ConditionExpression']
        assert '#m0 = if_not_exists(#m0, :m0)' in params['UpdateExpression']
        assert params['ExpressionAttributeValues'][':g0'] is True

    def test_increment_rejected(self, storage, table):
        table.update_item.side_effect = client_error(
            'ConditionalCheckFailedException',
            item={'current_uses': {'N': '1'}, 'max_uses': {'N': '1'}}
        )

        with pytest.raises(ConflictError) as exc_info:
            storage.increment_counter('A', 'B', 'current_uses', 'max_uses')

        assert exc_info.value.code == 'CONDITION_FAILED'
        assert exc_info.value.details['item'] == {'current_uses': 1, 'max_uses': 1}

    def test_decrement_is_guarded(self, storage, table):
        table.update_item.return_value = {'Attributes': {'current_uses': Decimal('0')}}

        item = storage.decrement_counter('INVITATION#ABC123', 'METADATA', 'current_uses',
                                         guards={'last_used_by': 'r1'})

        params = table.update_item.call_args.kwargs
        assert params['UpdateExpression'] == 'SET #c = #c - :one'
        assert params['ConditionExpression'] == 'attribute_exists(PK) AND #c > :zero AND #g0 = :g0'
        assert params['ExpressionAttributeValues'][':g0'] == 'r1'
        assert item == {'current_uses': 0}

    def test_decrement_rejected(self, storage, table):
        table.update_item.side_effect = client_error('ConditionalCheckFailedException')

        with pytest.raises(ConflictError) as exc_info:
            storage.decrement_counter('A', 'B', 'current_uses', guards={'last_used_by': 'r1'})

        assert exc_info.value.code == 'CONDITION_FAILED'


class TestStorageFailures:
    """Tests for timeout and throttling translation."""

    def test_throttling_is_unavailable(self, storage, table):
        table.get_item.side_effect = client_error('ProvisionedThroughputExceededException', 'GetItem')

        with pytest.raises(UnavailableError) as exc_info:
            storage.get_item('A', 'B')

        assert exc_info.value.outcome_unknown is False

    def test_connect_timeout_is_known_not_applied(self, storage, table):
        table.put_item.side_effect = ConnectTimeoutError(endpoint_url='https://dynamodb')

        with pytest.raises(UnavailableError) as exc_info:
            storage.put_item({'PK': 'A', 'SK': 'B'})

        assert exc_info.value.outcome_unknown is False

    def test_read_timeout_on_write_has_unknown_outcome(self, storage, table):
        table.update_item.side_effect = ReadTimeoutError(endpoint_url='https://dynamodb')

        with pytest.raises(UnavailableError) as exc_info:
            storage.update_item('A', 'B', {'notes': 'x'})

        assert exc_info.value.outcome_unknown is True

    def test_other_client_errors_propagate(self, storage, table):
        table.get_item.side_effect = client_error('ValidationException', 'GetItem')

        with pytest.raises(ClientError):
            storage.get_item('A', 'B')
