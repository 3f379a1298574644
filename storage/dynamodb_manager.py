"""DynamoDB-backed key-value store for facility events and status records."""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.models import (
    FacilityMetadata, NormalizedEvent, SchedulerRun, format_instant,
)

logger = logging.getLogger(__name__)

EVENTS_PREFIX = 'events:'
METADATA_PREFIX = 'metadata:'
SCHEDULER_RUN_KEY = 'scheduler-run'
CHUNK_SEPARATOR = '#'

# DynamoDB rejects items over 400 KB; leave room for the key and attributes
MAX_CHUNK_BYTES = 350_000


def events_key(facility_id: str) -> str:
    return f"{EVENTS_PREFIX}{facility_id}"


def metadata_key(facility_id: str) -> str:
    return f"{METADATA_PREFIX}{facility_id}"


def chunk_key(key: str, index: int) -> str:
    """Key of an overflow chunk; chunk 0 lives under the entry key itself."""
    return key if index == 0 else f"{key}{CHUNK_SEPARATOR}{index}"


def split_json_array(items: List[Any], max_bytes: int = MAX_CHUNK_BYTES) -> List[str]:
    """
    Serialize items into JSON arrays that each fit within max_bytes of UTF-8.

    Always returns at least one array, so an empty list is stored as "[]".
    """
    chunks: List[str] = []
    current: List[str] = []
    size = 2

    for item in items:
        encoded = json.dumps(item)
        item_size = len(encoded.encode('utf-8')) + 1
        if current and size + item_size > max_bytes:
            chunks.append('[' + ','.join(current) + ']')
            current, size = [], 2
        current.append(encoded)
        size += item_size

    chunks.append('[' + ','.join(current) + ']')
    return chunks


class DynamoDBManager:
    """
    Manager for the schedule table.

    Every entry is an item with partition key ``key`` and a JSON string under
    ``value``. Event lists too large for one item are split into JSON arrays:
    the first under ``events:{id}`` with a ``chunks`` count, the rest under
    ``events:{id}#1``, ``events:{id}#2`` and so on. Writes replace the whole
    entry for a facility.
    """

    def __init__(
        self,
        table_name: str,
        region_name: Optional[str] = None,
        max_chunk_bytes: int = MAX_CHUNK_BYTES
    ):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region (defaults to the environment's region)
            max_chunk_bytes: Largest JSON value written to a single event item
        """
        self.table_name = table_name
        self.max_chunk_bytes = max_chunk_bytes
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    def _put(self, key: str, value: Any) -> None:
        self._put_raw(key, json.dumps(value))

    def _put_raw(self, key: str, raw: str, **attributes: Any) -> None:
        try:
            self.table.put_item(Item={
                'key': key,
                'value': raw,
                'updated_at': format_instant(datetime.now(timezone.utc)),
                **attributes
            })
        except ClientError as e:
            logger.error(f"Error writing {key} to DynamoDB: {e}")
            raise

    def _get_item(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.table.get_item(Key={'key': key})
        except ClientError as e:
            logger.error(f"Error reading {key} from DynamoDB: {e}")
            raise
        return response.get('Item')

    def _get(self, key: str) -> Optional[Any]:
        """
        Read and decode one entry.

        Returns:
            Decoded JSON value, or None when the entry is missing, blank or unparseable
        """
        item = self._get_item(key) or {}
        return self._decode(key, item.get('value'))

    @staticmethod
    def _decode(key: str, raw: Optional[str]) -> Optional[Any]:
        if not raw or not str(raw).strip():
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning(f"Ignoring unparseable value stored under {key}: {e}")
            return None

    @staticmethod
    def _chunk_count(item: Optional[Dict[str, Any]]) -> int:
        try:
            return max(int((item or {}).get('chunks', 1)), 1)
        except (TypeError, ValueError):
            return 1

    def put_events(self, facility_id: str, events: List[NormalizedEvent]) -> None:
        """
        Replace the stored event list for a facility.

        Overflow chunks are written before the head item and stale chunks are
        removed after it, so a reader never sees a count with missing chunks.
        """
        key = events_key(facility_id)
        chunks = split_json_array([event.to_dict() for event in events], self.max_chunk_bytes)
        previous_count = self._chunk_count(self._get_item(key))

        try:
            with self.table.batch_writer() as batch:
                for index in range(1, len(chunks)):
                    batch.put_item(Item={
                        'key': chunk_key(key, index),
                        'value': chunks[index],
                        'updated_at': format_instant(datetime.now(timezone.utc))
                    })
        except ClientError as e:
            logger.error(f"Error writing event chunks for {facility_id}: {e}")
            raise

        self._put_raw(key, chunks[0], chunks=len(chunks))

        if previous_count > len(chunks):
            try:
                with self.table.batch_writer() as batch:
                    for index in range(len(chunks), previous_count):
                        batch.delete_item(Key={'key': chunk_key(key, index)})
            except ClientError as e:
                logger.error(f"Error removing stale event chunks for {facility_id}: {e}")
                raise

        logger.info(
            f"Stored {len(events)} events for {facility_id}",
            extra={'facility_id': facility_id, 'chunks': len(chunks)}
        )

    def get_events(self, facility_id: str) -> List[NormalizedEvent]:
        """
        Retrieve a facility's events.

        Returns:
            Stored events, or an empty list when nothing usable is stored
        """
        key = events_key(facility_id)
        head = self._get_item(key)
        if head is None:
            return []

        items = self._decode_chunk(key, head.get('value'))
        for index in range(1, self._chunk_count(head)):
            extra_key = chunk_key(key, index)
            extra = self._get_item(extra_key) or {}
            items.extend(self._decode_chunk(extra_key, extra.get('value')))

        return self._to_events(facility_id, items)

    def _decode_chunk(self, key: str, raw: Optional[str]) -> List[Any]:
        value = self._decode(key, raw)
        if value is None:
            return []
        if not isinstance(value, list):
            logger.warning(f"Ignoring non-list events stored under {key}")
            return []
        return value

    @staticmethod
    def _to_events(facility_id: str, items: Any) -> List[NormalizedEvent]:
        if not isinstance(items, list):
            return []

        events = []
        for item in items:
            try:
                events.append(NormalizedEvent.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed stored event for {facility_id}: {e}")
        return events

    def put_metadata(self, facility_id: str, metadata: FacilityMetadata) -> None:
        self._put(metadata_key(facility_id), metadata.to_dict())

    def get_metadata(self, facility_id: str) -> FacilityMetadata:
        """
        Retrieve a facility's status record.

        Returns:
            Stored metadata, or a "No data available" record when none is stored
        """
        stored = self.find_metadata(facility_id)
        if stored is not None:
            return stored
        return FacilityMetadata.no_data(facility_id, datetime.now(timezone.utc))

    def find_metadata(self, facility_id: str) -> Optional[FacilityMetadata]:
        """Stored metadata without the "no data" default."""
        item = self._get(metadata_key(facility_id))
        if not isinstance(item, dict):
            return None
        try:
            return FacilityMetadata.from_dict(item)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed metadata for {facility_id}: {e}")
            return None

    def put_scheduler_run(self, run: SchedulerRun) -> None:
        self._put(SCHEDULER_RUN_KEY, run.to_dict())
        logger.info(f"Stored scheduler run with {len(run.results)} facility results")

    def get_scheduler_run(self) -> Optional[SchedulerRun]:
        item = self._get(SCHEDULER_RUN_KEY)
        if not isinstance(item, dict):
            return None
        try:
            return SchedulerRun.from_dict(item)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed scheduler run: {e}")
            return None
    def get_all_events(self) -> Dict[str, List[NormalizedEvent]]:
        """
        Retrieve every stored event list using a paginated Scan.

        Returns:
            Dictionary mapping facility id to its events
        """
        logger.info("Scanning DynamoDB table for all events")
        scan_kwargs = {'FilterExpression': Attr('key').begins_with(EVENTS_PREFIX)}

        try:
            response = self.table.scan(**scan_kwargs)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **scan_kwargs
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

        by_key = {item['key']: item for item in items}
        events = {}
        for key, head in by_key.items():
            if CHUNK_SEPARATOR in key:
                continue
            facility_id = key[len(EVENTS_PREFIX):]
            stored = self._decode_chunk(key, head.get('value'))
            for index in range(1, self._chunk_count(head)):
                extra_key = chunk_key(key, index)
                stored.extend(self._decode_chunk(extra_key, by_key.get(extra_key, {}).get('value')))
            events[facility_id] = self._to_events(facility_id, stored)

        logger.info(f"Retrieved stored events for {len(events)} facilities")
        return events
