"""
Tests for the per-endpoint Pod.

Each test drives ``Pod.tick()`` directly against an in-process source and
sink, so no timers are involved.
"""

import aiohttp
import pytest_asyncio

from collector.pod import Pod, PodLifecycle

BATCH_1 = b'{"a":1}\nhello\n'
BATCH_2 = b'{"b":2}\n'


@pytest_asyncio.fixture
async def make_pod(endpoint, session, sink, offset_store):
    pods = []

    def factory(**kwargs):
        kwargs.setdefault("start_jitter_seconds", 0)
        kwargs.setdefault("retry_backoff_seconds", 0.05)
        pod = Pod(endpoint, session, offset_store, sink.url, **kwargs)
        pods.append(pod)
        return pod

    yield factory
    for pod in pods:
        await pod.stop()


class TestPodDelivery:

    async def test_delivers_all_batches_in_order(self, make_pod, source, sink, offset_store, endpoint):
        source.batches = {2: BATCH_2, 1: BATCH_1}
        pod = make_pod()

        await pod.tick()

        assert [r["batchId"] for r in sink.received] == [1, 1, 2]
        assert sink.received[1]["textMessage"] == "hello"
        assert await offset_store.read(endpoint, 1) == len(BATCH_1)
        assert await offset_store.read(endpoint, 2) == len(BATCH_2)
        assert pod.lifecycle is PodLifecycle.ACTIVE

    async def test_second_tick_is_idempotent(self, make_pod, source, sink):
        source.batches = {1: BATCH_1, 2: BATCH_2}
        pod = make_pod()

        await pod.tick()
        delivered = len(sink.received)
        await pod.tick()

        assert len(sink.received) == delivered

    async def test_fully_persisted_offsets_mean_no_deliveries(
        self, make_pod, source, sink, offset_store, endpoint
    ):
        source.batches = {1: BATCH_1, 2: BATCH_2}
        await offset_store.write(endpoint, 1, len(BATCH_1))
        await offset_store.write(endpoint, 2, len(BATCH_2))
        pod = make_pod()

        await pod.tick()

        assert sink.attempts == 0
        assert source.batch_requests == []

    async def test_growing_batch_is_followed_across_ticks(
        self, make_pod, source, sink, offset_store, endpoint
    ):
        source.batches = {1: b"first\n"}
        pod = make_pod()
        await pod.tick()

        source.batches[1] = b"first\nsecond\n"
        await pod.tick()

        assert [r["textMessage"] for r in sink.received] == ["first", "second"]
        assert source.batch_requests[-1].get("start") == "6"
        assert await offset_store.read(endpoint, 1) == len(b"first\nsecond\n")

    async def test_sealed_batch_trailing_line_is_flushed(self, make_pod, source, sink):
        source.batches = {1: b"one\ntwo", 2: b"three\n"}
        pod = make_pod()

        await pod.tick()

        assert [r["textMessage"] for r in sink.received] == ["one", "two", "three"]


class TestPodResume:

    async def test_fresh_pod_resumes_from_persisted_offset(
        self, make_pod, source, sink, offset_store, endpoint
    ):
        source.batches = {1: BATCH_1}
        await offset_store.write(endpoint, 1, len(b'{"a":1}\n'))
        pod = make_pod(supports_start_offset=True)

        await pod.tick()

        assert source.batch_requests[-1].get("start") == "8"
        assert [r.get("textMessage") for r in sink.received] == ["hello"]

    async def test_fresh_pod_resumes_by_discarding(
        self, make_pod, source, sink, offset_store, endpoint
    ):
        source.batches = {1: BATCH_1}
        await offset_store.write(endpoint, 1, len(b'{"a":1}\n'))
        pod = make_pod(supports_start_offset=False)

        await pod.tick()

        assert "start" not in source.batch_requests[-1]
        assert [r.get("textMessage") for r in sink.received] == ["hello"]

    async def test_sink_outage_resumes_after_retry(
        self, make_pod, source, sink, offset_store, endpoint, wait_until
    ):
        source.batches = {1: BATCH_1, 2: BATCH_2}
        sink.fail_next = 1
        pod = make_pod()

        await pod.tick()

        assert sink.received == []
        assert pod.sink_connected is False
        assert pod.state.stats.total_unacked_bytes == len(b'{"a":1}\n')

        await wait_until(lambda: pod.state.stats.total_unacked_bytes == 0)
        await pod.tick()

        assert [r["batchId"] for r in sink.received] == [1, 1, 2]
        assert await offset_store.read(endpoint, 1) == len(BATCH_1)
        assert await offset_store.read(endpoint, 2) == len(BATCH_2)
        assert pod.sink_connected is True


class TestPodIntegrity:

    async def test_offset_beyond_batch_size_skips_batch(
        self, make_pod, source, sink, offset_store, endpoint
    ):
        source.batches = {1: BATCH_1, 2: BATCH_2}
        await offset_store.write(endpoint, 1, len(BATCH_1) + 100)
        pod = make_pod()

        await pod.tick()
        await pod.tick()

        assert 1 in pod.state.skipped_batches
        assert [r["batchId"] for r in sink.received] == [2]
        assert pod.lifecycle is PodLifecycle.ACTIVE

    async def test_shrinking_batch_is_skipped(self, make_pod, source, sink):
        source.batches = {1: b"one\n"}
        pod = make_pod()
        await pod.tick()

        source.batches = {1: b"o", 2: b"two\n"}
        await pod.tick()

        assert 1 in pod.state.skipped_batches
        assert [r["textMessage"] for r in sink.received] == ["one", "two"]


class TestPodDiscovery:

    async def test_poll_failure_disables_until_recovery(self, make_pod, source, sink):
        source.batches = {1: BATCH_2}
        source.list_status = 500
        pod = make_pod()

        await pod.tick()
        assert pod.lifecycle is PodLifecycle.DISABLED
        assert sink.attempts == 0

        source.list_status = 200
        await pod.tick()
        assert pod.lifecycle is PodLifecycle.ACTIVE
        assert len(sink.received) == 1

    async def test_error_status_payload_disables(self, make_pod, source):
        source.list_payload = {"status": "error", "error": "disk"}
        pod = make_pod()

        await pod.tick()

        assert pod.lifecycle is PodLifecycle.DISABLED

    async def test_discover_sorts_by_id(self, make_pod, source):
        source.batches = {3: b"c\n", 1: b"a\n", 2: b"b\n"}
        pod = make_pod()

        batches = await pod.discover()

        assert [b.id for b in batches] == [1, 2, 3]
        assert [b.batch_size for b in batches] == [2, 2, 2]


class TestPodSkipHistory:

    async def test_new_endpoint_skips_existing_batches(
        self, make_pod, source, sink, offset_store, endpoint
    ):
        source.batches = {1: BATCH_1, 2: BATCH_2}
        pod = make_pod(skip_history=True)

        await pod.tick()

        assert sink.attempts == 0
        assert await offset_store.read(endpoint, 1) == len(BATCH_1)
        assert await offset_store.read(endpoint, 2) == len(BATCH_2)

        source.batches[3] = b"new\n"
        await pod.tick()

        assert [r["textMessage"] for r in sink.received] == ["new"]

    async def test_known_endpoint_keeps_history(
        self, make_pod, source, sink, offset_store, endpoint
    ):
        source.batches = {1: BATCH_2}
        await offset_store.ensure_work_dir(endpoint)
        pod = make_pod(skip_history=True)

        await pod.tick()

        assert len(sink.received) == 1


class TestPodLifecycle:

    async def test_snapshot_shape(self, make_pod, endpoint):
        pod = make_pod()

        assert pod.snapshot() == {
            "state": "active",
            "targetUrl": endpoint.target_url,
            "serviceName": "svc",
            "stats": {"totalSentBytes": 0, "totalUnackedBytes": 0},
        }

    async def test_started_pod_ticks_and_stops(self, make_pod, source, sink, wait_until):
        source.batches = {1: BATCH_2}
        pod = make_pod(poll_interval_seconds=60)

        pod.start()
        await wait_until(lambda: len(sink.received) == 1)
        await pod.stop()

        assert pod.lifecycle is PodLifecycle.STOPPED


class TestPodConnectionPools:

    async def test_sink_posts_do_not_wait_on_open_stream_connection(
        self, endpoint, offset_store, source, sink
    ):
        source.batches = {1: BATCH_1}
        # One connection: the open batch stream occupies it for the whole batch
        async with aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=1)
        ) as source_session, aiohttp.ClientSession() as sink_session:
            pod = Pod(
                endpoint,
                source_session,
                offset_store,
                sink.url,
                start_jitter_seconds=0,
                request_timeout=1,
                sink_session=sink_session,
            )
            try:
                await pod.tick()
            finally:
                await pod.stop()

        assert len(sink.received) == 2
        assert pod.sink_connected is True
        assert await offset_store.read(endpoint, 1) == len(BATCH_1)


class TestPodStreamFailures:

    async def test_dropped_stream_resumes_from_committed_offset(
        self, make_pod, source, sink, offset_store, endpoint, wait_until
    ):
        body = b"one\ntwo\nthree\n"
        source.batches = {1: body}
        source.abort_after[1] = 10
        source.before_abort = lambda: wait_until(lambda: len(sink.received) == 2)
        pod = make_pod()

        await pod.tick()

        assert pod.lifecycle is PodLifecycle.ACTIVE
        assert await offset_store.read(endpoint, 1) == len(b"one\ntwo\n")

        del source.abort_after[1]
        await pod.tick()

        assert source.batch_requests[-1].get("start") == str(len(b"one\ntwo\n"))
        assert [r["textMessage"] for r in sink.received] == ["one", "two", "three"]
        assert await offset_store.read(endpoint, 1) == len(body)

    async def test_stop_aborts_open_stream(self, make_pod, source, sink, wait_until):
        source.batches = {1: b"one\n"}
        source.follow = True
        pod = make_pod(poll_interval_seconds=60)

        pod.start()
        await wait_until(lambda: len(sink.received) == 1 and source.open_streams == 1)
        await pod.stop()

        await wait_until(lambda: source.open_streams == 0)
        assert pod.lifecycle is PodLifecycle.STOPPED
