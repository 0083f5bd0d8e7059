# core/corpus.py

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List

from core.errors import InvalidCorpusRecordError
from core.fingerprint import Fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorpusEntry:
    """A previously archived item: opaque store id plus its fingerprint"""
    id: Any
    fingerprint: Fingerprint

    @classmethod
    def from_record(cls, record: dict) -> 'CorpusEntry':
        """
        Validate a raw store record and wrap it as a corpus entry.

        Only the id is mandatory. Missing or malformed hash fields are kept
        as None so the matcher skips them.
        """
        if not isinstance(record, dict):
            raise InvalidCorpusRecordError(f"Corpus record must be a mapping, got {type(record).__name__}")

        entry_id = record.get('id')
        if entry_id is None or entry_id == '':
            raise InvalidCorpusRecordError("Corpus record has no id")

        fingerprint = Fingerprint.from_dict(record)

        missing = [name for name, value in fingerprint.perceptual_hashes.items() if value is None]
        if missing:
            logger.debug(f"Corpus entry {entry_id} lacks {', '.join(missing)}")

        return cls(id=entry_id, fingerprint=fingerprint)

    def to_record(self) -> dict:
        return {'id': self.id, **self.fingerprint.to_dict()}


def as_entry(item) -> CorpusEntry:
    """Coerce a CorpusEntry, (id, Fingerprint) pair or raw record to a CorpusEntry"""
    if isinstance(item, CorpusEntry):
        return item

    if isinstance(item, tuple) and len(item) == 2 and isinstance(item[1], Fingerprint):
        return CorpusEntry(id=item[0], fingerprint=item[1])

    if isinstance(item, dict):
        return CorpusEntry.from_record(item)

    raise InvalidCorpusRecordError(f"Unsupported corpus item: {type(item).__name__}")


def entries_from_records(records: Iterable) -> List[CorpusEntry]:
    """Build corpus entries, skipping items that cannot be validated"""
    entries = []
    skipped = 0

    for index, record in enumerate(records):
        try:
            entries.append(as_entry(record))
        except InvalidCorpusRecordError as e:
            skipped += 1
            logger.warning(f"Skipping corpus record #{index}: {e}")

    if skipped:
        logger.warning(f"Skipped {skipped} invalid corpus records")

    return entries


def load_corpus(path: str) -> List[CorpusEntry]:
    """Load a corpus JSON file ({"items": [...]} or a bare list)"""
    with open(path, 'r') as f:
        try:
            data = json.load(f)
        except ValueError as e:
            raise InvalidCorpusRecordError(f"Corpus file {path} is not valid JSON: {e}") from e

    records = data.get('items', []) if isinstance(data, dict) else data
    if not isinstance(records, list):
        raise InvalidCorpusRecordError(f"Corpus file {path} does not contain a list of items")

    entries = entries_from_records(records)
    logger.info(f"Loaded {len(entries)} corpus entries from {path}")
    return entries


def save_corpus(path: str, entries: Iterable[CorpusEntry]):
    """Save corpus entries to a JSON file"""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    items = [entry.to_record() for entry in entries]

    with open(path, 'w') as f:
        json.dump({'items': items}, f, indent=2)

    logger.info(f"Saved {len(items)} corpus entries to {path}")
