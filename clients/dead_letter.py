"""
Dead-letter sinks: an append-only JSON Lines file and an in-memory list.
"""
import asyncio
import json
import os
from typing import List

from loguru import logger

from crawler.interfaces import DeadLetterWriteError, IDeadLetterSink
from crawler.models import DeadLetterRecord


class JsonlDeadLetterSink(IDeadLetterSink):
    """Appends one JSON document per line to ``path``."""

    def __init__(self, path: str):
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    async def write(self, record: DeadLetterRecord) -> None:
        line = json.dumps(record.to_payload(), ensure_ascii=False)
        try:
            await asyncio.to_thread(self._append, line)
        except OSError as e:
            raise DeadLetterWriteError(f"Failed to write dead-letter record: {e}", cause=e)
        logger.info(f"📪 Dead-letter record written for {record.original_message.get('itemUrl')}")

    def _append(self, line: str):
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(line + "\n")

    def read_records(self) -> List[DeadLetterRecord]:
        """All records in write order, for inspection and replay."""
        if not os.path.exists(self.path):
            return []
        records = []
        with open(self.path, 'r', encoding='utf-8') as f:
            for line in f:
                if line.strip():
                    records.append(DeadLetterRecord.model_validate(json.loads(line)))
        return records


class InMemoryDeadLetterSink(IDeadLetterSink):

    def __init__(self):
        self.records: List[DeadLetterRecord] = []

    async def write(self, record: DeadLetterRecord) -> None:
        self.records.append(record)
