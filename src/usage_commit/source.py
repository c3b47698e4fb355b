"""Record sources.

The warehouse extraction happens upstream; here records arrive as an exported
file (a JSON array or JSON lines) or as rows already in memory.
"""

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Protocol

from usage_commit.errors import RecordError
from usage_commit.models import UsageRecord

log = logging.getLogger("usage_commit.source")


class RecordSource(Protocol):
    def __iter__(self) -> Iterator[UsageRecord]: ...


class RowRecordSource:
    def __init__(self, rows: Iterable[Mapping[str, Any]]):
        self.rows = rows

    def __iter__(self) -> Iterator[UsageRecord]:
        for n, row in enumerate(self.rows, start=1):
            try:
                yield UsageRecord.from_row(row)
            except RecordError as e:
                raise RecordError(f"row {n}: {e}") from e


class JsonFileRecordSource:
    """Usage records from a JSON array or a JSON-lines file.

    Numbers are parsed as Decimal so reward values keep their exact digits.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _rows(self) -> list[Mapping[str, Any]]:
        try:
            text = self.path.read_text()
        except OSError as e:
            raise RecordError(f"cannot read records from {self.path}: {e}") from e
        try:
            if text.lstrip().startswith("["):
                rows = json.loads(text, parse_float=Decimal)
            else:
                rows = [json.loads(line, parse_float=Decimal) for line in text.splitlines() if line.strip()]
        except json.JSONDecodeError as e:
            raise RecordError(f"{self.path} is not valid JSON: {e}") from e
        if not all(isinstance(r, Mapping) for r in rows):
            raise RecordError(f"{self.path}: every record must be a JSON object")
        return rows

    def __iter__(self) -> Iterator[UsageRecord]:
        rows = self._rows()
        if not rows:
            log.info("%s returned an empty record set", self.path)
        else:
            log.info("Total records read from %s: %s", self.path, len(rows))
        yield from RowRecordSource(rows)
