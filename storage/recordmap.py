"""In-memory map of recovered records.

Keys are unique. Inserting a key that is already present replaces its
value and provenance, so on duplicate keys the last record visited in
traversal order wins.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from models.storage import Provenance, RecordPair


@dataclass(frozen=True)
class MapEntry:
    key: bytes
    value: bytes
    provenance: Provenance | None = None


class RecordMap:
    """Key bytes to value bytes, optionally remembering where each came from."""

    def __init__(self, pairs: Iterable[RecordPair] | None = None):
        self._entries: dict[bytes, MapEntry] = {}
        for pair in pairs or ():
            self.add(pair)

    def insert(self, key: bytes, value: bytes, provenance: Provenance | None = None) -> MapEntry | None:
        """Store a pair, returning the entry it replaced, if any."""
        previous = self._entries.get(key)
        self._entries[key] = MapEntry(key=key, value=value, provenance=provenance)
        return previous

    def add(self, pair: RecordPair) -> MapEntry | None:
        return self.insert(pair.key, pair.value, pair.provenance)

    def get(self, key: bytes, default: bytes | None = None) -> bytes | None:
        entry = self._entries.get(key)
        return entry.value if entry is not None else default

    def entry(self, key: bytes) -> MapEntry | None:
        return self._entries.get(key)

    def provenance(self, key: bytes) -> Provenance | None:
        entry = self._entries.get(key)
        return entry.provenance if entry is not None else None

    def items(self) -> Iterator[tuple[bytes, bytes]]:
        for key, entry in self._entries.items():
            yield key, entry.value

    def entries(self) -> Iterator[MapEntry]:
        return iter(self._entries.values())

    def to_dict(self) -> dict[bytes, bytes]:
        return {key: entry.value for key, entry in self._entries.items()}

    def __getitem__(self, key: bytes) -> bytes:
        return self._entries[key].value

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RecordMap):
            return self.to_dict() == other.to_dict()
        if isinstance(other, dict):
            return self.to_dict() == other
        return NotImplemented
