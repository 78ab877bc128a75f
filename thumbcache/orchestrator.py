"""
Cache-aside thumbnail orchestration.

Request flow:
    validate -> build key -> store lookup -> hit: return stored bytes
                                          -> miss: read source -> resize
                                             -> detached write-back -> return

Concurrent misses on the same key are not coordinated by default: each one
reads and resizes independently and issues its own write, the last write
wins. Resizing is deterministic so the stored bytes are equivalent. Set
single_flight=True to let the first miss do the work for every concurrent
caller on that key.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set

from thumbcache.cache import CacheStore
from thumbcache.cache_keys import build_cache_key
from thumbcache.config import CACHE_EXPIRATION_SECONDS, DEFAULT_THUMB_WIDTH
from thumbcache.errors import (
    INVALID_SIZE_MESSAGE,
    PATH_REQUIRED_MESSAGE,
    BadRequestError,
    Outcome,
)
from thumbcache.schemas import ThumbnailRequest
from thumbcache.sources import ImageSource
from thumbcache.transformer import ImageTransformer

logger = logging.getLogger(__name__)


def _parse_dimension(value: Optional[str]) -> Optional[int]:
    """Parse a base-10 positive integer; None/empty means absent."""
    if value is None or value == "":
        return None
    text = value.strip()
    if not (text.isascii() and text.isdigit()):
        raise BadRequestError(INVALID_SIZE_MESSAGE)
    try:
        number = int(text)
    except ValueError as e:
        # Over the interpreter's digit limit
        raise BadRequestError(INVALID_SIZE_MESSAGE) from e
    if number <= 0:
        raise BadRequestError(INVALID_SIZE_MESSAGE)
    return number


def parse_request(
    path: Optional[str],
    width: Optional[str] = None,
    height: Optional[str] = None,
    default_width: int = DEFAULT_THUMB_WIDTH,
) -> ThumbnailRequest:
    """
    Validate raw query values into a ThumbnailRequest.

    Width defaults to default_width when omitted, even if height is given.

    Raises:
        BadRequestError: path missing, or width/height not a positive integer
    """
    if not path:
        raise BadRequestError(PATH_REQUIRED_MESSAGE)
    parsed_width = _parse_dimension(width)
    parsed_height = _parse_dimension(height)
    return ThumbnailRequest(
        source_id=path,
        width=parsed_width if parsed_width is not None else default_width,
        height=parsed_height,
    )


@dataclass(frozen=True)
class ThumbnailResult:
    """Thumbnail bytes plus whether they came from the store."""
    outcome: Outcome
    data: bytes
    cache_key: str

    @property
    def cache_status(self) -> str:
        return self.outcome.value


class ThumbnailService:
    """
    Serves thumbnails with a cache-aside strategy.

    The store, source and transformer are process-wide handles owned by the
    entry point and injected here.
    """

    def __init__(
        self,
        store: CacheStore,
        source: ImageSource,
        transformer: ImageTransformer,
        ttl_seconds: int = CACHE_EXPIRATION_SECONDS,
        single_flight: bool = False,
    ):
        self.store = store
        self.source = source
        self.transformer = transformer
        self.ttl_seconds = ttl_seconds
        self.single_flight = single_flight
        # Strong references keep detached write-backs alive until done
        self._pending_writes: Set[asyncio.Task] = set()
        self._inflight: Dict[str, asyncio.Future] = {}

    @property
    def pending_writes(self) -> int:
        return len(self._pending_writes)

    async def get_thumbnail(self, request: ThumbnailRequest) -> ThumbnailResult:
        """
        Return the thumbnail for a request, computing it on a miss.

        Raises:
            SourceNotFoundError: the source does not resolve
            TransformError: the source could not be resized
            Exception: any other source read failure
        """
        key = build_cache_key(request.source_id, request.width, request.height)

        cached = await self._lookup(key)
        if cached is not None:
            logger.info(f"[API/IMAGE] Cache hit for {key}")
            return ThumbnailResult(Outcome.HIT, cached, key)

        logger.info(f"[API/IMAGE] Cache miss for {key}. Generating thumbnail...")

        if not self.single_flight:
            data = await self._render(request)
            self._schedule_write(key, data)
            return ThumbnailResult(Outcome.MISS, data, key)

        leader = self._inflight.get(key)
        while leader is not None:
            data = await asyncio.shield(leader)
            if data is not None:
                return ThumbnailResult(Outcome.MISS, data, key)
            # Leader was cancelled; the next waiter to wake takes over
            leader = self._inflight.get(key)

        future = asyncio.get_event_loop().create_future()
        self._inflight[key] = future
        try:
            data = await self._render(request)
        except asyncio.CancelledError:
            future.set_result(None)
            raise
        except Exception as e:
            future.set_exception(e)
            # Followers observe the exception; mark it retrieved for the leader
            future.exception()
            raise
        else:
            future.set_result(data)
            self._schedule_write(key, data)
            return ThumbnailResult(Outcome.MISS, data, key)
        finally:
            self._inflight.pop(key, None)

    async def _lookup(self, key: str) -> Optional[bytes]:
        """Store read; an unavailable store degrades to a miss."""
        try:
            return await self.store.get_async(key)
        except Exception as e:
            logger.warning(f"[API/IMAGE] Cache read failed for {key}, treating as miss: {e}")
            return None

    async def _render(self, request: ThumbnailRequest) -> bytes:
        raw = await self.source.read_async(request.source_id)
        return await self.transformer.resize_async(
            raw, request.width, request.height, format_hint=request.source_id
        )

    def _schedule_write(self, key: str, data: bytes) -> None:
        """Start the write-back without awaiting it."""
        task = asyncio.ensure_future(self.store.set_with_ttl_async(key, data, self.ttl_seconds))
        self._pending_writes.add(task)
        task.add_done_callback(lambda t: self._on_write_done(key, t))

    def _on_write_done(self, key: str, task: asyncio.Task) -> None:
        self._pending_writes.discard(task)
        if task.cancelled():
            logger.warning(f"[API/IMAGE] Cache write cancelled for {key}")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[API/IMAGE] Failed to set cache for {key}: {exc}")
        else:
            logger.debug(f"[API/IMAGE] Cached {key} for {self.ttl_seconds}s")

    async def drain(self) -> None:
        """Wait for every outstanding write-back to finish."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)
