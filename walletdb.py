import logging
from collections import Counter
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, Self

from exceptions import DecoderNotRegistered, KeyNotFound
from models import Diagnostic, FormatProfile, ReaderConfig, RecordPair, WalletRecord
from storage import ConsistencyDriver, MemorySource, RecordMap, open_source
from storage.pager import ByteSource

logger = logging.getLogger(__name__)

RecordDecoder = Callable[[WalletRecord], Any]


class DecoderRegistry:
    """Maps a wallet key tag to the decoder for that record type.

    No decoders ship with this package; callers register their own.
    """

    def __init__(self):
        self._decoders: dict[str, RecordDecoder] = {}

    def register(self, tag: str, decoder: RecordDecoder) -> None:
        self._decoders[tag] = decoder

    def get(self, tag: str) -> RecordDecoder | None:
        return self._decoders.get(tag)

    def decode(self, record: WalletRecord) -> Any:
        """Decode a record with the decoder registered for its tag. Raises DecoderNotRegistered otherwise"""
        decoder = self._decoders.get(record.tag)
        if decoder is None:
            raise DecoderNotRegistered(record.tag)
        return decoder(record)

    def __contains__(self, tag: object) -> bool:
        return tag in self._decoders

    def __len__(self) -> int:
        return len(self._decoders)


class WalletDB:
    """Read-only view of the records in a wallet database image."""

    def __init__(self, source: ByteSource, config: ReaderConfig | None = None, registry: DecoderRegistry | None = None):
        self.source = source
        self.registry = registry or DecoderRegistry()
        self._driver = ConsistencyDriver(source, config)
        self._records: RecordMap | None = None

    @classmethod
    def open(cls, path: Path | str, config: ReaderConfig | None = None, **kwargs) -> Self:
        """Open a file path, or "-" for standard input"""
        return cls(open_source(path), config, **kwargs)

    @classmethod
    def from_bytes(cls, data: bytes, config: ReaderConfig | None = None, **kwargs) -> Self:
        return cls(MemorySource(data), config, **kwargs)

    @property
    def profile(self) -> FormatProfile:
        return self._driver.profile

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return self._driver.diagnostics

    def records(self) -> Iterator[RecordPair]:
        """Stream records straight from the image, duplicates included"""
        return self._driver.records()

    def as_map(self) -> RecordMap:
        """
        Recover every record into a map. The first call reads the image; later calls reuse
        the result, since the image never changes
        """
        if self._records is None:
            self._records = self._driver.build_map()
        return self._records

    def get(self, key: bytes) -> bytes:
        """Retrieve the value stored under key. If key doesn't exist, a KeyNotFound exception will be raised"""
        try:
            return self.as_map()[key]
        except KeyError:
            raise KeyNotFound(key)

    def count(self, value: bytes) -> int:
        """Return the count of keys which have a certain value"""
        return sum(1 for _, v in self.as_map().items() if v == value)

    def wallet_records(self) -> Iterator[WalletRecord]:
        """Yield (tag, key_suffix, value) triples for every key carrying a wallet tag"""
        for entry in self.as_map().entries():
            record = WalletRecord.from_key_value(entry.key, entry.value, entry.provenance)
            if record is None:
                logger.debug("key without a wallet tag: %s", entry.key[:32].hex())
                continue
            yield record

    def tag_counts(self) -> Counter[str]:
        return Counter(record.tag for record in self.wallet_records())

    def decode(self, record: WalletRecord) -> Any:
        return self.registry.decode(record)

    def close(self) -> None:
        self.source.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
