"""
GH Archive Collector - Star surges from the hourly public event archive.

Each hour of public GitHub activity is published as one gzip-compressed,
newline-delimited JSON file (``https://data.gharchive.org/2025-01-15-7.json.gz``).
Files run to hundreds of megabytes decompressed, so they are never held in
memory whole:

    network read --(bounded queue)--> gunzip --> line split --> json decode

The read stage runs as its own task and suspends on ``queue.put`` while the
queue is full, so memory stays at ``buffer_chunks`` raw chunks plus one
decompressed chunk regardless of file size.

Failure handling:
- A line that does not decode is skipped and counted.
- An HTTP error, transport error or corrupt gzip stream aborts that one hour.
  Counts already folded from the aborted hour are discarded, and the next
  hour is read.

Usage:
    async with httpx.AsyncClient(timeout=60.0) as http:
        reader = ArchiveReader(http)
        result = await ArchiveStarSurgeStrategy(reader, min_stars=5).run()
"""

from __future__ import annotations

import asyncio
import json
import logging
import zlib
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Sequence

import httpx

from collectors.base import BaseStrategy, Candidate
from utils.rate_limiter import AsyncRateLimiter

logger = logging.getLogger(__name__)

GHARCHIVE_URL = "https://data.gharchive.org"

# "Star added" events are published as WatchEvent
STAR_EVENT = "WatchEvent"


class ArchiveSourceError(Exception):
    """One archive source could not be read to the end."""


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class ArchiveEvent:
    """The fields of an archive record this project uses."""
    type: str
    repo_id: int
    repo_name: str

    @classmethod
    def from_record(cls, record: Any) -> Optional["ArchiveEvent"]:
        if not isinstance(record, dict):
            return None
        repo = record.get("repo")
        if not isinstance(repo, dict):
            return None
        repo_id = repo.get("id")
        if not isinstance(repo_id, int) or isinstance(repo_id, bool):
            return None
        event_type = record.get("type")
        name = repo.get("name")
        return cls(
            type=event_type if isinstance(event_type, str) else "",
            repo_id=repo_id,
            repo_name=name if isinstance(name, str) else "",
        )


@dataclass
class StarAggregate:
    """Star counts folded over a set of archive sources."""
    counts: Counter = field(default_factory=Counter)
    names: Dict[int, str] = field(default_factory=dict)
    sources_read: int = 0
    failed_sources: List[str] = field(default_factory=list)


class _Failure:
    def __init__(self, error: Exception):
        self.error = error


_END = object()


class _GzipStream:
    """Incremental gunzip over concatenated members, emitting at most ``max_length`` bytes per piece."""

    def __init__(self, max_length: int):
        self.max_length = max_length
        self._inflater = zlib.decompressobj(16 + zlib.MAX_WBITS)

    @property
    def eof(self) -> bool:
        return self._inflater.eof

    def feed(self, chunk: bytes) -> Iterator[bytes]:
        data = chunk
        while data:
            piece = self._inflater.decompress(data, self.max_length)
            if piece:
                yield piece
            if self._inflater.eof:
                # Next gzip member starts in the unused remainder
                data = self._inflater.unused_data
                if data:
                    self._inflater = zlib.decompressobj(16 + zlib.MAX_WBITS)
            else:
                data = self._inflater.unconsumed_tail

    def flush(self) -> bytes:
        return self._inflater.flush()


# =============================================================================
# READER
# =============================================================================

class ArchiveReader:
    """
    Lazy event reader over gzip-compressed NDJSON sources.

    Args:
        client: httpx.AsyncClient used for streaming GETs
        base_url: Archive root
        chunk_size: Raw bytes per network read
        buffer_chunks: Queue depth between the read and decompress stages
        inflate_chunk: Largest decompressed piece produced at once
        limiter: Optional courtesy limiter taken once per source
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = GHARCHIVE_URL,
        chunk_size: int = 64 * 1024,
        buffer_chunks: int = 8,
        inflate_chunk: int = 256 * 1024,
        limiter: Optional[AsyncRateLimiter] = None,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.chunk_size = chunk_size
        self.buffer_chunks = buffer_chunks
        self.inflate_chunk = inflate_chunk
        self.limiter = limiter or AsyncRateLimiter()

        # Statistics
        self.bad_lines = 0

    def hour_url(self, day: date, hour: int) -> str:
        # Archive keys use an unpadded hour: 2025-01-15-7.json.gz
        return f"{self.base_url}/{day.isoformat()}-{hour}.json.gz"

    async def _pump(self, url: str, queue: asyncio.Queue) -> None:
        """Read stage: stream raw bytes into the queue, then a terminal marker."""
        try:
            async with self.client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise ArchiveSourceError(f"HTTP {response.status_code}")
                async for chunk in response.aiter_raw(self.chunk_size):
                    # Blocks while the queue is full
                    await queue.put(chunk)
        except Exception as e:
            await queue.put(_Failure(e))
            return
        await queue.put(_END)

    def _decode_lines(self, lines: List[bytes]) -> List[Dict[str, Any]]:
        records = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError:
                self.bad_lines += 1
                continue
            if isinstance(record, dict):
                records.append(record)
            else:
                self.bad_lines += 1
        return records

    async def events(self, url: str) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield decoded records from one source.

        Raises:
            ArchiveSourceError: the source failed before its end
        """
        await self.limiter.acquire()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.buffer_chunks)
        producer = asyncio.create_task(self._pump(url, queue))
        decompressor = _GzipStream(self.inflate_chunk)
        pending = b""
        received = False

        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                if isinstance(item, _Failure):
                    raise ArchiveSourceError(f"{url}: {type(item.error).__name__}: {item.error}") from item.error

                received = True
                pieces = decompressor.feed(item)
                while True:
                    try:
                        data = next(pieces, None)
                    except zlib.error as e:
                        raise ArchiveSourceError(f"{url}: corrupt gzip stream: {e}") from e
                    if data is None:
                        break

                    pending += data
                    lines = pending.split(b"\n")
                    pending = lines.pop()
                    for record in self._decode_lines(lines):
                        yield record

            try:
                pending += decompressor.flush()
            except zlib.error as e:
                raise ArchiveSourceError(f"{url}: corrupt gzip stream: {e}") from e
            if received and not decompressor.eof:
                raise ArchiveSourceError(f"{url}: truncated gzip stream")
            for record in self._decode_lines([pending]):
                yield record
        finally:
            if not producer.done():
                producer.cancel()
                try:
                    await producer
                except asyncio.CancelledError:
                    pass


async def aggregate_star_counts(reader: ArchiveReader, urls: Sequence[str]) -> StarAggregate:
    """
    Fold star events from each source into one count per repository id.

    A failed source contributes nothing: its partial counts are dropped and
    the failure is recorded.
    """
    aggregate = StarAggregate()

    for url in urls:
        hour_counts: Counter = Counter()
        hour_names: Dict[int, str] = {}
        events_seen = 0
        try:
            async for record in reader.events(url):
                events_seen += 1
                event = ArchiveEvent.from_record(record)
                if event is None or event.type != STAR_EVENT:
                    continue
                hour_counts[event.repo_id] += 1
                hour_names.setdefault(event.repo_id, event.repo_name)
        except ArchiveSourceError as e:
            logger.warning(f"Skipping archive source: {e}")
            aggregate.failed_sources.append(url)
            continue

        logger.info(f"{url}: {events_seen} events, {sum(hour_counts.values())} stars")
        aggregate.counts.update(hour_counts)
        for repo_id, name in hour_names.items():
            aggregate.names.setdefault(repo_id, name)
        aggregate.sources_read += 1

    return aggregate


# =============================================================================
# STRATEGY
# =============================================================================

class ArchiveStarSurgeStrategy(BaseStrategy):
    """
    Repositories that gained at least ``min_stars`` stars over the prior full day.

    Reads the 24 hour-buckets of yesterday (UTC) one after another.
    """

    name = "gharchive"

    def __init__(
        self,
        reader: ArchiveReader,
        min_stars: int = 5,
        day: Optional[date] = None,
    ):
        super().__init__()
        self.reader = reader
        self.min_stars = min_stars
        self.day = day

    def source_urls(self) -> List[str]:
        day = self.day or (datetime.now(timezone.utc).date() - timedelta(days=1))
        return [self.reader.hour_url(day, hour) for hour in range(24)]

    async def _discover(self) -> List[Candidate]:
        aggregate = await aggregate_star_counts(self.reader, self.source_urls())

        for url in aggregate.failed_sources:
            self._record_unit_failure(url, "source skipped")

        logger.info(
            f"Archive: {aggregate.sources_read} hours read, {len(aggregate.counts)} repos starred, "
            f"{self.reader.bad_lines} undecodable lines"
        )

        candidates: List[Candidate] = []
        # most_common() orders ties by first insertion, so the result is deterministic
        for repo_id, count in aggregate.counts.most_common():
            if count < self.min_stars:
                break
            full_name = aggregate.names.get(repo_id, "")
            if "/" not in full_name:
                logger.debug(f"Skipping repo id {repo_id}: no owner/name in archive record")
                continue
            owner, name = full_name.split("/", 1)
            candidates.append(Candidate(
                external_id=repo_id,
                owner=owner,
                name=name,
                raw_metadata={"stars_24h": count},
            ))

        logger.info(f"Archive: {len(candidates)} repos with >= {self.min_stars} stars in 24h")
        return candidates
