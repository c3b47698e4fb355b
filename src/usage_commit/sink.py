import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Sequence

import usage_commit.constants as C
from usage_commit.models import ChainRecord

log = logging.getLogger("usage_commit.sink")


class FailureSink:
    """Writes the records of unsuccessful batches to one JSON file for out-of-band reprocessing."""

    def __init__(self, path: str | Path = C.FAILED_BATCHES_FILE) -> None:
        self.path = Path(path)

    def write(self, records: Sequence[ChainRecord]) -> Path | None:
        """Replace the artifact with ``records``. Nothing is written for an empty set.

        The file is written beside the artifact and renamed over it, so a
        failed write leaves the previous artifact intact. I/O errors are
        logged, not raised; the caller's run result stays the same.
        """
        if not records:
            log.debug("No failed records, not writing %s", self.path)
            return None
        data = json.dumps([r.as_dict() for r in records], indent=2)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp", delete=False
            ) as fh:
                tmp_name = fh.name
                fh.write(data + "\n")
            os.replace(tmp_name, self.path)
        except OSError as e:
            log.error("Error saving failed batches to %s: %s", self.path, e)
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            return None
        log.warning("Saved %s failed records to %s", len(records), self.path)
        return self.path

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> list[ChainRecord]:
        data = json.loads(self.path.read_text())
        return [ChainRecord.from_dict(d) for d in data]
