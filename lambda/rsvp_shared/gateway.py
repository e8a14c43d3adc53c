"""
Storage gateway over the single DynamoDB table.

This module wraps read/write/query operations against the RSVP table and enforces
the conditional-write semantics the rest of the service relies on:
- put with a not-exists condition (duplicate creates fail with ConflictError)
- update with an expected version (optimistic locking, VersionMismatchError)
- atomic conditional counter increments (single round trip, never read-then-write)

Secondary-index queries are eventually consistent; callers needing the latest state
re-read through get_item, which always uses strongly consistent reads.

Follows steering rules:
- Explicit error handling (storage faults become UnavailableError)
- No global mutable state
- Bounded timeouts on every storage call
"""

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, Any, Iterator, List, Optional, Tuple

import boto3
from boto3.dynamodb.types import TypeDeserializer
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from rsvp_shared.errors import ConflictError, NotFoundError, UnavailableError, VersionMismatchError
from rsvp_shared.keys import INDEX_KEYS


logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = 'ConditionalCheckFailedException'

# Errors after which the request is known not to have been applied
THROTTLING_CODES = {
    'ProvisionedThroughputExceededException',
    'ThrottlingException',
    'RequestLimitExceeded',
    'InternalServerError',
    'ServiceUnavailable',
}

DEFAULT_TIMEOUT_SECONDS = 3.0

_deserializer = TypeDeserializer()


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def to_dynamo(value: Any) -> Any:
    """Convert Python values into types boto3 accepts (floats become Decimal)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value: Any) -> Any:
    """Convert boto3 values back into plain Python (Decimal becomes int or float)."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [from_dynamo(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(from_dynamo(v) for v in value)
    return value


def _old_item(error: ClientError) -> Optional[Dict[str, Any]]:
    """
    Extract the item returned with a failed condition check.

    The resource layer does not deserialize error payloads, so the item
    arrives in wire format ({'N': '3'}).
    """
    item = error.response.get('Item')
    if not item:
        return None
    try:
        return from_dynamo({k: _deserializer.deserialize(v) for k, v in item.items()})
    except (TypeError, AttributeError):
        return from_dynamo(item)


class StorageGateway:
    """
    Gateway for all reads and writes against the RSVP table.

    Items are plain dictionaries keyed by the PK/SK attributes defined in
    rsvp_shared.keys.
    """

    def __init__(
        self,
        table_name: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        table: Any = None
    ):
        """
        Initialize the gateway.

        Args:
            table_name: Name of the DynamoDB table
            timeout_seconds: Connect and read timeout for every storage call
            table: Pre-built boto3 Table resource (tests inject a stub)
        """
        self.table_name = table_name
        if table is None:
            config = Config(
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                retries={'max_attempts': 3, 'mode': 'standard'}
            )
            table = boto3.resource('dynamodb', config=config).Table(table_name)
        self.table = table

    @contextmanager
    def _storage_errors(self, operation: str, write: bool = False) -> Iterator[None]:
        """Translate transport and throttling failures into UnavailableError."""
        try:
            yield
        except ClientError as error:
            if _error_code(error) in THROTTLING_CODES:
                logger.warning('Storage throttled during %s: %s', operation, _error_code(error))
                raise UnavailableError(f'Storage unavailable during {operation}') from error
            raise
        except (ConnectTimeoutError, EndpointConnectionError) as error:
            logger.warning('Storage unreachable during %s: %s', operation, error)
            raise UnavailableError(f'Storage unavailable during {operation}') from error
        except (ReadTimeoutError, ConnectionClosedError) as error:
            # The request may have been applied; writers must re-read before reporting
            logger.warning('Storage timed out during %s: %s', operation, error)
            raise UnavailableError(
                f'Storage timed out during {operation}',
                outcome_unknown=write
            ) from error

    def get_item(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        """
        Read one item by primary key with a strongly consistent read.

        Returns:
            The item, or None if no item occupies the key
        """
        with self._storage_errors('get_item'):
            response = self.table.get_item(Key={'PK': pk, 'SK': sk}, ConsistentRead=True)
        item = response.get('Item')
        return from_dynamo(item) if item else None

    def query_page(
        self,
        pk: str,
        sk_prefix: Optional[str] = None,
        sk_between: Optional[Tuple[str, str]] = None,
        index_name: Optional[str] = None,
        newest_first: bool = False,
        limit: Optional[int] = None,
        start_key: Optional[Dict[str, Any]] = None
    ) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """
        Run a single query page.

        Args:
            pk: Partition key value (of the table or of the named index)
            sk_prefix: Optional begins_with condition on the sort key
            sk_between: Optional inclusive (low, high) sort-key range; replaces sk_prefix
            index_name: Secondary index to query (read-only, eventually consistent)
            newest_first: Descending sort-key order
            limit: Maximum items to evaluate
            start_key: LastEvaluatedKey of the previous page

        Returns:
            Tuple of (items, last_evaluated_key)
        """
        pk_attr, sk_attr = INDEX_KEYS[index_name] if index_name else ('PK', 'SK')

        names = {'#pk': pk_attr}
        values: Dict[str, Any] = {':pk': pk}
        condition = '#pk = :pk'
        if sk_between:
            names['#sk'] = sk_attr
            values[':lo'], values[':hi'] = sk_between
            condition += ' AND #sk BETWEEN :lo AND :hi'
        elif sk_prefix:
            names['#sk'] = sk_attr
            values[':sk'] = sk_prefix
            condition += ' AND begins_with(#sk, :sk)'

        params: Dict[str, Any] = {
            'KeyConditionExpression': condition,
            'ExpressionAttributeNames': names,
            'ExpressionAttributeValues': values,
            'ScanIndexForward': not newest_first,
        }
        if index_name:
            params['IndexName'] = index_name
        else:
            params['ConsistentRead'] = True
        if limit:
            params['Limit'] = limit
        if start_key:
            params['ExclusiveStartKey'] = start_key

        with self._storage_errors('query'):
            response = self.table.query(**params)

        items = [from_dynamo(item) for item in response.get('Items', [])]
        return items, response.get('LastEvaluatedKey')

    def query(
        self,
        pk: str,
        sk_prefix: Optional[str] = None,
        sk_between: Optional[Tuple[str, str]] = None,
        index_name: Optional[str] = None,
        newest_first: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Query every page of a key range, stopping early once ``limit`` items are collected."""
        items: List[Dict[str, Any]] = []
        start_key = None
        while True:
            page, start_key = self.query_page(
                pk,
                sk_prefix=sk_prefix,
                sk_between=sk_between,
                index_name=index_name,
                newest_first=newest_first,
                limit=(limit - len(items)) if limit else None,
                start_key=start_key
            )
            items.extend(page)
            if not start_key or (limit and len(items) >= limit):
                return items

    def put_item(self, item: Dict[str, Any], condition_not_exists: bool = False) -> None:
        """
        Write a full item.

        Args:
            item: Item including PK and SK
            condition_not_exists: Fail instead of overwriting an existing item

        Raises:
            ConflictError: If condition_not_exists is set and the key is occupied
            UnavailableError: On storage timeout or throttling
        """
        params: Dict[str, Any] = {'Item': to_dynamo(item)}
        if condition_not_exists:
            params['ConditionExpression'] = 'attribute_not_exists(PK)'

        with self._storage_errors('put_item', write=True):
            try:
                self.table.put_item(**params)
            except ClientError as error:
                if _error_code(error) == CONDITIONAL_CHECK_FAILED:
                    raise ConflictError(
                        'An item already exists with this key',
                        {'PK': item.get('PK'), 'SK': item.get('SK')}
                    ) from error
                raise

    def update_item(
        self,
        pk: str,
        sk: str,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Apply a patch to an existing item and bump its version.

        Attributes whose patch value is None are removed. The version counter is
        always incremented in the same update.

        Args:
            pk: Partition key
            sk: Sort key
            patch: Attribute values to set (None removes the attribute)
            expected_version: If given, apply only when the stored version matches

        Returns:
            The item as stored after the update

        Raises:
            NotFoundError: If no item occupies the key
            VersionMismatchError: If the stored version differs from expected_version
            UnavailableError: On storage timeout or throttling
        """
        names: Dict[str, str] = {'#version': 'version'}
        values: Dict[str, Any] = {':zero': 0, ':one': 1}
        sets: List[str] = []
        removes: List[str] = []

        for position, (attribute, value) in enumerate(sorted(patch.items())):
            if attribute in ('PK', 'SK', 'version'):
                continue
            name = f'#a{position}'
            names[name] = attribute
            if value is None:
                removes.append(name)
            else:
                values[f':a{position}'] = value
                sets.append(f'{name} = :a{position}')

        sets.append('#version = if_not_exists(#version, :zero) + :one')
        expression = 'SET ' + ', '.join(sets)
        if removes:
            expression += ' REMOVE ' + ', '.join(removes)

        condition = 'attribute_exists(PK)'
        if expected_version is not None:
            values[':expected'] = expected_version
            if expected_version == 0:
                condition += ' AND (attribute_not_exists(#version) OR #version = :expected)'
            else:
                condition += ' AND #version = :expected'

        with self._storage_errors('update_item', write=True):
            try:
                response = self.table.update_item(
                    Key={'PK': pk, 'SK': sk},
                    UpdateExpression=expression,
                    ConditionExpression=condition,
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=to_dynamo(values),
                    ReturnValues='ALL_NEW',
                    ReturnValuesOnConditionCheckFailure='ALL_OLD'
                )
            except ClientError as error:
                if _error_code(error) != CONDITIONAL_CHECK_FAILED:
                    raise
                old = _old_item(error)
                if old is None:
                    raise NotFoundError(f"No item at {pk} / {sk}") from error
                raise VersionMismatchError(
                    f"Item at {pk} / {sk} was modified concurrently",
                    expected_version=expected_version,
                    actual_version=old.get('version')
                ) from error

        return from_dynamo(response.get('Attributes', {}))

    def increment_counter(
        self,
        pk: str,
        sk: str,
        counter: str,
        ceiling: str,
        patch: Optional[Dict[str, Any]] = None,
        guards: Optional[Dict[str, Any]] = None,
        set_if_missing: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Atomically increment a counter while it stays below a ceiling attribute.

        The condition and the increment travel in one UpdateItem call, so two
        concurrent callers can never both take the last unit.

        Args:
            pk: Partition key
            sk: Sort key
            counter: Counter attribute (e.g. current_uses)
            ceiling: Attribute holding the maximum (e.g. max_uses); absent means unlimited
            patch: Extra attributes to set in the same update
            guards: Attributes that must equal the given values (e.g. is_active=True)
            set_if_missing: Attributes written only when absent (e.g. first_used_at)

        Returns:
            The item as stored after the increment

        Raises:
            ConflictError: If the item is missing, the ceiling is reached or a guard fails
            UnavailableError: On storage timeout or throttling
        """
        names = {'#c': counter, '#max': ceiling}
        values: Dict[str, Any] = {':zero': 0, ':one': 1}
        sets = ['#c = if_not_exists(#c, :zero) + :one']
        conditions = [
            'attribute_exists(PK)',
            '(attribute_not_exists(#max) OR attribute_not_exists(#c) OR #c < #max)'
        ]

        for position, (attribute, value) in enumerate(sorted((patch or {}).items())):
            names[f'#p{position}'] = attribute
            values[f':p{position}'] = value
            sets.append(f'#p{position} = :p{position}')

        for position, (attribute, value) in enumerate(sorted((set_if_missing or {}).items())):
            names[f'#m{position}'] = attribute
            values[f':m{position}'] = value
            sets.append(f'#m{position} = if_not_exists(#m{position}, :m{position})')

        for position, (attribute, value) in enumerate(sorted((guards or {}).items())):
            names[f'#g{position}'] = attribute
            values[f':g{position}'] = value
            conditions.append(f'#g{position} = :g{position}')

        with self._storage_errors('increment_counter', write=True):
            try:
                response = self.table.update_item(
                    Key={'PK': pk, 'SK': sk},
                    UpdateExpression='SET ' + ', '.join(sets),
                    ConditionExpression=' AND '.join(conditions),
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=to_dynamo(values),
                    ReturnValues='ALL_NEW',
                    ReturnValuesOnConditionCheckFailure='ALL_OLD'
                )
            except ClientError as error:
                if _error_code(error) != CONDITIONAL_CHECK_FAILED:
                    raise
                raise ConflictError(
                    f'Conditional increment of {counter} rejected',
                    {'item': _old_item(error)},
                    code='CONDITION_FAILED'
                ) from error

        return from_dynamo(response.get('Attributes', {}))

    def decrement_counter(
        self,
        pk: str,
        sk: str,
        counter: str,
        patch: Optional[Dict[str, Any]] = None,
        guards: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Atomically give back one unit of a counter taken by increment_counter.

        Conditional on the counter being positive and on every guard matching, so a
        unit that a later caller has since taken over is never returned twice.

        Raises:
            ConflictError: If the item is missing, the counter is zero or a guard fails
            UnavailableError: On storage timeout or throttling
        """
        names = {'#c': counter}
        values: Dict[str, Any] = {':zero': 0, ':one': 1}
        sets = ['#c = #c - :one']
        conditions = ['attribute_exists(PK)', '#c > :zero']

        for position, (attribute, value) in enumerate(sorted((patch or {}).items())):
            names[f'#p{position}'] = attribute
            values[f':p{position}'] = value
            sets.append(f'#p{position} = :p{position}')

        for position, (attribute, value) in enumerate(sorted((guards or {}).items())):
            names[f'#g{position}'] = attribute
            values[f':g{position}'] = value
            conditions.append(f'#g{position} = :g{position}')

        with self._storage_errors('decrement_counter', write=True):
            try:
                response = self.table.update_item(
                    Key={'PK': pk, 'SK': sk},
                    UpdateExpression='SET ' + ', '.join(sets),
                    ConditionExpression=' AND '.join(conditions),
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=to_dynamo(values),
                    ReturnValues='ALL_NEW',
                    ReturnValuesOnConditionCheckFailure='ALL_OLD'
                )
            except ClientError as error:
                if _error_code(error) != CONDITIONAL_CHECK_FAILED:
                    raise
                raise ConflictError(
                    f'Conditional decrement of {counter} rejected',
                    {'item': _old_item(error)},
                    code='CONDITION_FAILED'
                ) from error

        return from_dynamo(response.get('Attributes', {}))
