"""Export and import of pending records as a transferable JSON document.

Export is read-only with respect to the queue, so the same batch can be
exported again if a manual transfer has to be retried. Import only yields
payloads for the caller to apply; it never merges into the local queue.
"""

import copy
import json
import logging
from typing import Any

from .errors import MalformedDocument, NoPriorExport
from .ids import format_watermark, now_ms, parse_watermark
from .local_queue import LocalQueue
from .records import EventRecord, extract_payloads

logger = logging.getLogger(__name__)


class Transfer:
    """Builds export documents and replays imported ones."""

    def __init__(self) -> None:
        self._last_export: dict[str, Any] | None = None

    @property
    def has_export(self) -> bool:
        return self._last_export is not None

    @property
    def last_export(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._last_export)

    def restore_last_export(self, document: dict[str, Any] | None) -> None:
        self._last_export = copy.deepcopy(document)

    def export(self, queue: LocalQueue) -> dict[str, Any]:
        """Serialize the queue contents and watermark into an export document.

        The queue is not modified.
        """
        document = {
            "origin": queue.origin,
            "exportedAt": now_ms(),
            "records": [record.to_dict() for record in queue],
            "watermark": format_watermark(queue.watermark),
        }
        self._last_export = copy.deepcopy(document)

        logger.debug(f"Exported {len(document['records'])} records")
        return document

    def export_json(self, queue: LocalQueue, indent: int | None = 2) -> str:
        return json.dumps(self.export(queue), indent=indent)

    def reexport_last(self) -> dict[str, Any]:
        """Return a copy of the last exported document.

        Raises:
            NoPriorExport: If nothing has been exported yet.
        """
        if self._last_export is None:
            raise NoPriorExport("No previous export to re-export")

        logger.debug(
            f"Re-exported last document ({len(self._last_export['records'])} records)"
        )
        return copy.deepcopy(self._last_export)

    def import_document(
        self,
        document: str | bytes | dict[str, Any],
        queue: LocalQueue | None = None,
    ) -> list[dict[str, Any]]:
        """Parse an export document and return its payloads in replay order.

        Payloads are sorted by record id, so any two devices importing the
        same records get the same sequence. If ``queue`` is given and the
        document's watermark is ahead of it, the queue's watermark advances.

        Raises:
            MalformedDocument: On invalid JSON, a missing or non-list
                ``records`` field, or an unparseable record.
        """
        data = parse_document(document)
        records = parse_records(data["records"])
        payloads = extract_payloads(records)

        if queue is not None and data.get("watermark") is not None:
            try:
                watermark = parse_watermark(data["watermark"])
            except ValueError as e:
                raise MalformedDocument(f"Invalid watermark: {e}") from e
            if queue.advance_watermark(watermark):
                logger.debug(f"Watermark advanced to {watermark} by import")

        logger.info(
            f"Imported {len(payloads)} payloads from {data.get('origin') or 'unknown origin'}"
        )
        return payloads


def parse_document(document: str | bytes | dict[str, Any]) -> dict[str, Any]:
    """Decode and shape-check an export document."""
    if isinstance(document, (str, bytes)):
        try:
            data = json.loads(document)
        except json.JSONDecodeError as e:
            raise MalformedDocument(f"Invalid JSON: {e}") from e
    else:
        data = document

    if not isinstance(data, dict):
        raise MalformedDocument("Export document must be a JSON object")
    if not isinstance(data.get("records"), list):
        raise MalformedDocument("Missing or invalid records array")
    return data


def parse_records(raw_records: list[Any]) -> list[EventRecord]:
    records = []
    for index, raw in enumerate(raw_records):
        try:
            records.append(EventRecord.from_dict(raw))
        except (KeyError, ValueError) as e:
            raise MalformedDocument(f"Invalid record at index {index}: {e}") from e
    return records
