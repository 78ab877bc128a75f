"""
Tests for the cache-aside thumbnail flow.
"""
import asyncio
import io
import unittest

from PIL import Image

from thumbcache.cache import MemoryCacheStore
from thumbcache.cache_keys import build_cache_key
from thumbcache.errors import (
    BadRequestError,
    CacheStoreError,
    Outcome,
    SourceNotFoundError,
    TransformError,
    classify_error,
)
from thumbcache.orchestrator import ThumbnailService, parse_request
from thumbcache.schemas import ThumbnailRequest
from thumbcache.sources import ImageSource
from thumbcache.transformer import ImageTransformer


def make_image_bytes(size, fmt="JPEG"):
    buf = io.BytesIO()
    Image.new("RGB", size, (30, 120, 200)).save(buf, fmt)
    return buf.getvalue()


class DictSource(ImageSource):
    """In-memory source that counts reads."""

    name = "dict"

    def __init__(self, files, delay=0.0):
        self.files = files
        self.delay = delay
        self.reads = 0

    def read(self, source_id):
        self.reads += 1
        if source_id not in self.files:
            raise SourceNotFoundError(source_id)
        return self.files[source_id]

    async def read_async(self, source_id):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.read(source_id)


class RecordingStore(MemoryCacheStore):
    """Memory store that records writes and can be made to fail."""

    def __init__(self, fail_get=False, fail_set=False):
        super().__init__()
        self.fail_get = fail_get
        self.fail_set = fail_set
        self.writes = []

    def get(self, key):
        if self.fail_get:
            raise CacheStoreError("store unavailable")
        return super().get(key)

    def set_with_ttl(self, key, value, ttl_seconds):
        self.writes.append((key, ttl_seconds))
        if self.fail_set:
            raise CacheStoreError("write refused")
        super().set_with_ttl(key, value, ttl_seconds)


class CountingTransformer(ImageTransformer):

    def __init__(self):
        super().__init__()
        self.calls = 0

    def resize(self, data, width, height=None, format_hint=None):
        self.calls += 1
        return super().resize(data, width, height, format_hint)


class TestParseRequest(unittest.TestCase):
    """Test query parameter validation."""

    def test_defaults(self):
        request = parse_request("/photos/a.jpg")
        self.assertEqual(request.width, 200)
        self.assertIsNone(request.height)

    def test_explicit_sizes(self):
        request = parse_request("/photos/a.jpg", "100", "80")
        self.assertEqual((request.width, request.height), (100, 80))

    def test_height_without_width_keeps_default_width(self):
        request = parse_request("/photos/a.jpg", None, "50", default_width=200)
        self.assertEqual((request.width, request.height), (200, 50))

    def test_missing_path(self):
        for path in (None, ""):
            with self.assertRaises(BadRequestError) as ctx:
                parse_request(path, "100")
            self.assertEqual(ctx.exception.reason, "File path is required.")

    def test_invalid_sizes(self):
        for width, height in (("abc", None), ("0", None), ("-5", None), ("1.5", None), ("100", "x"), ("100", "0"), ("9" * 5000, None)):
            with self.assertRaises(BadRequestError) as ctx:
                parse_request("/photos/a.jpg", width, height)
            self.assertEqual(ctx.exception.reason, "Invalid width or height parameter.")


class TestClassifyError(unittest.TestCase):
    """Test failure classification."""

    def test_mapping(self):
        self.assertEqual(classify_error(BadRequestError("bad")).status_code, 400)
        self.assertEqual(classify_error(SourceNotFoundError("x")).outcome, Outcome.NOT_FOUND)
        self.assertEqual(classify_error(TransformError("x")).status_code, 500)
        self.assertEqual(classify_error(PermissionError("x")).status_code, 500)
        self.assertEqual(classify_error(SourceNotFoundError("x")).message, "File not found.")
        self.assertEqual(
            classify_error(RuntimeError("x")).message,
            "Internal server error processing image.",
        )


class TestThumbnailService(unittest.IsolatedAsyncioTestCase):
    """Test hit/miss/error flows."""

    def setUp(self):
        self.source = DictSource({
            "/photos/a.jpg": make_image_bytes((800, 600)),
            "/photos/small.png": make_image_bytes((50, 50), "PNG"),
            "/photos/broken.jpg": b"not an image",
        })
        self.store = RecordingStore()
        self.transformer = CountingTransformer()
        self.service = ThumbnailService(self.store, self.source, self.transformer)

    async def test_miss_then_hit(self):
        request = ThumbnailRequest(source_id="/photos/a.jpg", width=100)
        first = await self.service.get_thumbnail(request)
        self.assertEqual(first.outcome, Outcome.MISS)
        self.assertEqual(first.cache_status, "miss")
        await self.service.drain()

        second = await self.service.get_thumbnail(request)
        self.assertEqual(second.outcome, Outcome.HIT)
        self.assertEqual(second.data, first.data)
        self.assertEqual(self.source.reads, 1)
        self.assertEqual(self.transformer.calls, 1)

    async def test_one_write_per_miss_with_ttl(self):
        request = ThumbnailRequest(source_id="/photos/a.jpg", width=100)
        result = await self.service.get_thumbnail(request)
        await self.service.drain()
        self.assertEqual(self.store.writes, [(build_cache_key("/photos/a.jpg", 100, None), 3600)])
        self.assertEqual(self.store.get(result.cache_key), result.data)

        await self.service.get_thumbnail(request)
        await self.service.drain()
        self.assertEqual(len(self.store.writes), 1)

    async def test_hit_returns_stored_bytes_unchanged(self):
        key = build_cache_key("/photos/a.jpg", 100, 100)
        self.store.set_with_ttl(key, b"opaque", 3600)
        self.store.writes.clear()

        result = await self.service.get_thumbnail(ThumbnailRequest(source_id="/photos/a.jpg", width=100, height=100))
        self.assertEqual(result.outcome, Outcome.HIT)
        self.assertEqual(result.data, b"opaque")
        self.assertEqual(self.source.reads, 0)
        self.assertEqual(self.store.writes, [])

    async def test_no_upscale(self):
        result = await self.service.get_thumbnail(ThumbnailRequest(source_id="/photos/small.png", width=200))
        with Image.open(io.BytesIO(result.data)) as img:
            self.assertEqual(img.size, (50, 50))

    async def test_not_found_writes_nothing(self):
        with self.assertRaises(SourceNotFoundError):
            await self.service.get_thumbnail(ThumbnailRequest(source_id="/missing.jpg", width=100))
        await self.service.drain()
        self.assertEqual(self.store.writes, [])

    async def test_transform_failure_writes_nothing(self):
        with self.assertRaises(TransformError):
            await self.service.get_thumbnail(ThumbnailRequest(source_id="/photos/broken.jpg", width=100))
        await self.service.drain()
        self.assertEqual(self.store.writes, [])

    async def test_store_read_failure_is_a_miss(self):
        self.store.fail_get = True
        result = await self.service.get_thumbnail(ThumbnailRequest(source_id="/photos/a.jpg", width=100))
        self.assertEqual(result.outcome, Outcome.MISS)

    async def test_write_failure_does_not_fail_response(self):
        self.store.fail_set = True
        with self.assertLogs("thumbcache.orchestrator", level="ERROR") as logs:
            result = await self.service.get_thumbnail(ThumbnailRequest(source_id="/photos/a.jpg", width=100))
            self.assertEqual(result.outcome, Outcome.MISS)
            await self.service.drain()
        self.assertTrue(any("Failed to set cache" in line for line in logs.output))
        self.assertEqual(self.service.pending_writes, 0)

    async def test_expired_entry_is_a_fresh_miss(self):
        clock = [0.0]
        store = MemoryCacheStore(clock=lambda: clock[0])
        service = ThumbnailService(store, self.source, self.transformer, ttl_seconds=3600)
        request = ThumbnailRequest(source_id="/photos/a.jpg", width=100)

        await service.get_thumbnail(request)
        await service.drain()
        clock[0] = 3600.0
        result = await service.get_thumbnail(request)
        self.assertEqual(result.outcome, Outcome.MISS)

    async def test_concurrent_misses_duplicate_work_by_default(self):
        self.source.delay = 0.05
        request = ThumbnailRequest(source_id="/photos/a.jpg", width=100)
        results = await asyncio.gather(*[self.service.get_thumbnail(request) for _ in range(3)])
        await self.service.drain()

        self.assertTrue(all(r.outcome == Outcome.MISS for r in results))
        self.assertEqual(len({r.data for r in results}), 1)
        self.assertEqual(self.source.reads, 3)
        self.assertEqual(len(self.store.writes), 3)


class TestSingleFlight(unittest.IsolatedAsyncioTestCase):
    """Test optional per-key miss deduplication."""

    def setUp(self):
        self.source = DictSource({"/photos/a.jpg": make_image_bytes((640, 480))}, delay=0.2)
        self.store = RecordingStore()
        self.transformer = CountingTransformer()
        self.service = ThumbnailService(self.store, self.source, self.transformer, single_flight=True)

    async def test_concurrent_misses_share_one_render(self):
        request = ThumbnailRequest(source_id="/photos/a.jpg", width=64)
        results = await asyncio.gather(*[self.service.get_thumbnail(request) for _ in range(4)])
        await self.service.drain()

        self.assertEqual(self.source.reads, 1)
        self.assertEqual(self.transformer.calls, 1)
        self.assertEqual(len(self.store.writes), 1)
        self.assertEqual(len({r.data for r in results}), 1)

    async def test_failure_reaches_every_waiter(self):
        request = ThumbnailRequest(source_id="/photos/missing.jpg", width=64)
        results = await asyncio.gather(
            *[self.service.get_thumbnail(request) for _ in range(3)],
            return_exceptions=True,
        )
        self.assertTrue(all(isinstance(r, SourceNotFoundError) for r in results))
        self.assertEqual(self.source.reads, 1)
        self.assertEqual(self.store.writes, [])

    async def test_cancelled_leader_hands_over_to_waiter(self):
        request = ThumbnailRequest(source_id="/photos/a.jpg", width=64)
        leader = asyncio.ensure_future(self.service.get_thumbnail(request))
        await asyncio.sleep(0.05)
        follower = asyncio.ensure_future(self.service.get_thumbnail(request))
        await asyncio.sleep(0.05)

        leader.cancel()
        result = await follower
        await self.service.drain()

        self.assertTrue(leader.cancelled())
        self.assertEqual(result.outcome, Outcome.MISS)
        # The leader was cancelled mid-read, so only the waiter rendered
        self.assertEqual(self.source.reads, 1)
        self.assertEqual(self.transformer.calls, 1)
        self.assertEqual(len(self.store.writes), 1)


if __name__ == '__main__':
    unittest.main()
