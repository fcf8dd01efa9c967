"""
Membership Index Builder

A bloom filter over `system|code` keys. A negative answer is authoritative
("definitely absent"); a positive answer only means "possibly present" and
must be confirmed against the full CodeSet.

Serialized forms:
- binary: msgpack envelope (format, version, count, rate) around the
  rbloom filter bytes
- csv:    one `system,code` row per code, for offline inspection
"""

import csv
import hashlib
import logging
import re
from pathlib import Path
from typing import Iterable, Set, Union
from urllib.parse import urlparse

import msgpack
from rbloom import Bloom

from .config import DEFAULT_FALSE_POSITIVE_RATE
from .models import Code

logger = logging.getLogger(__name__)

BLOOM_SUFFIX = ".bloom"
CSV_SUFFIX = ".csv"

FORMAT_NAME = "valueset-bloom"
FORMAT_VERSION = 1


def stable_hash(key: str) -> int:
    """
    128-bit signed hash for rbloom.

    Python's builtin hash() is salted per process, so filters that are saved
    and loaded again need a digest-based hash.
    """
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:16], "big", signed=True)


class MembershipIndex:
    """Bloom filter sized from cardinality and target false-positive rate."""

    def __init__(self, bloom: Bloom, false_positive_rate: float, count: int = 0):
        self.bloom = bloom
        self.false_positive_rate = false_positive_rate
        self.count = count

    @classmethod
    def for_capacity(cls, capacity: int, false_positive_rate: float = DEFAULT_FALSE_POSITIVE_RATE) -> "MembershipIndex":
        if not 0.0 < false_positive_rate < 1.0:
            raise ValueError(f"false_positive_rate must be in (0, 1), got {false_positive_rate}")
        bloom = Bloom(max(capacity, 1), false_positive_rate, hash_func=stable_hash)
        return cls(bloom, false_positive_rate)

    @classmethod
    def from_codes(
        cls,
        codes: Iterable[Code],
        false_positive_rate: float = DEFAULT_FALSE_POSITIVE_RATE,
    ) -> "MembershipIndex":
        codes = list(codes)
        index = cls.for_capacity(len(codes), false_positive_rate)
        for code in codes:
            index.add(code)
        logger.debug(f"Built membership index: {len(codes)} codes, {index.size_in_bits} bits")
        return index

    @property
    def size_in_bits(self) -> int:
        return self.bloom.size_in_bits

    @staticmethod
    def _key(item: Union[Code, str]) -> str:
        return item.key if isinstance(item, Code) else item

    def add(self, item: Union[Code, str]) -> None:
        self.bloom.add(self._key(item))
        self.count += 1

    def might_contain(self, item: Union[Code, str]) -> bool:
        """False means definitely absent."""
        return self._key(item) in self.bloom

    __contains__ = might_contain

    def to_bytes(self) -> bytes:
        return msgpack.packb({
            "format": FORMAT_NAME,
            "version": FORMAT_VERSION,
            "count": self.count,
            "false_positive_rate": self.false_positive_rate,
            "bloom": self.bloom.save_bytes(),
        })

    @classmethod
    def from_bytes(cls, data: bytes) -> "MembershipIndex":
        try:
            envelope = msgpack.unpackb(data)
        except (ValueError, msgpack.exceptions.UnpackException) as e:
            raise ValueError(f"Not a membership index file: {e}") from e
        if not isinstance(envelope, dict) or envelope.get("format") != FORMAT_NAME:
            raise ValueError("Not a membership index file")
        if envelope.get("version") != FORMAT_VERSION:
            raise ValueError(f"Unsupported membership index version: {envelope.get('version')}")
        bloom = Bloom.load_bytes(envelope["bloom"], stable_hash)
        return cls(bloom, envelope["false_positive_rate"], count=envelope["count"])

    def save(self, filename: Union[str, Path]) -> Path:
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.to_bytes())
        return path

    @classmethod
    def load(cls, filename: Union[str, Path]) -> "MembershipIndex":
        return cls.from_bytes(Path(filename).read_bytes())


def file_stem(url: str) -> str:
    """host + path of a canonical URL with non-alphanumerics replaced by '_'."""
    parsed = urlparse(url)
    return re.sub(r"[^A-Za-z0-9]", "_", f"{parsed.netloc}{parsed.path}")


def default_bloom_path(directory: Union[str, Path], url: str) -> Path:
    return Path(directory) / f"{file_stem(url)}{BLOOM_SUFFIX}"


def default_csv_path(directory: Union[str, Path], url: str) -> Path:
    return Path(directory) / f"{file_stem(url)}{CSV_SUFFIX}"


def save_csv(codes: Iterable[Code], filename: Union[str, Path]) -> Path:
    """Write `system,code` rows, sorted so exports diff cleanly."""
    path = Path(filename)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        for code in sorted(codes):
            writer.writerow([code.system, code.code])
    return path


def load_csv(filename: Union[str, Path]) -> Set[Code]:
    with open(filename, "r", newline="", encoding="utf-8") as f:
        return {Code(row[0], row[1]) for row in csv.reader(f) if len(row) >= 2}
