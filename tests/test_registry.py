"""Tests for task tracking, cancellation, and outcome events."""

from unittest.mock import MagicMock

import pytest

from genart.core.errors import GenerationError, JobError, JobTimeoutError, TransportError
from genart.core.executor import DualContextExecutor
from genart.core.job_types import JobRequest
from genart.core.lifecycle import LifecycleState
from genart.core.registry import JobRequestTask, TaskOutcome, TaskRegistry
from genart.core.task_events import CHANNEL_NAMES
from genart.image.fetcher import AssetFetcher

from tests.helpers import drain, make_response, no_pause, png_bytes


QUEUED = {"id": "j1", "status": "queued"}
PROCESSING = {"id": "j1", "status": "processing"}
COMPLETE = {"id": "j1", "status": "complete", "url": "http://x/a.png"}


def record_events(events):
    """Subscribe to every channel; returns the list of `(channel, task)` seen."""
    seen = []
    for name in CHANNEL_NAMES:
        events.channel(name).add_listener(lambda task, name=name: seen.append((name, task)))
    return seen


def build_registry(client, max_wait=300, pause=no_pause, download=None):
    executor = DualContextExecutor()
    download_session = MagicMock()
    download_session.get.return_value = download or make_response(content=png_bytes())
    fetcher = AssetFetcher(executor, session=download_session)
    registry = TaskRegistry(executor, client, fetcher, max_wait=max_wait, pause=pause)
    return registry, executor, download_session


class TestGenerate:
    @pytest.mark.asyncio
    async def test_success_delivers_images_and_events(self, client, session, endpoint):
        session.post.side_effect = [make_response(body=QUEUED), make_response(body=COMPLETE)]
        registry, executor, _ = build_registry(client)
        seen = record_events(registry.events)
        delivered = []

        try:
            request = JobRequest(config=endpoint, prompt="a red fox")
            images = await registry.generate(
                request,
                poll_interval=5,
                on_image=lambda index, image: delivered.append(index),
            )
            await drain()
        finally:
            executor.shutdown()

        assert len(images) == 1
        assert images[0].size == (4, 3)
        assert delivered == [0]
        assert [name for name, _ in seen] == ["started", "succeeded", "completed"]
        assert request.state == LifecycleState.COMPLETE
        assert registry.active_tasks() == []

    @pytest.mark.asyncio
    async def test_task_naming(self, client, session, endpoint):
        session.post.return_value = make_response(body=QUEUED)
        registry, executor, _ = build_registry(client)

        try:
            task = await registry.submit(JobRequest(config=endpoint, prompt="a red fox"))
            assert task.name == "Test"
            assert task.description == "Getting images from Test"
            assert registry.active_tasks() == [task]
            registry.cancel_all()
            await drain()
        finally:
            executor.shutdown()

    @pytest.mark.asyncio
    async def test_timeout_is_not_success(self, client, session, endpoint):
        session.post.return_value = make_response(body=PROCESSING)
        registry, executor, download_session = build_registry(client, max_wait=10)
        seen = record_events(registry.events)

        try:
            task = await registry.submit(JobRequest(config=endpoint, prompt="a red fox"), poll_interval=5)
            with pytest.raises(JobTimeoutError):
                await registry.get_images(task)
            await drain()
        finally:
            executor.shutdown()

        assert [name for name, _ in seen] == ["started", "timed_out", "completed"]
        assert task.outcome == TaskOutcome.TIMED_OUT
        assert isinstance(task.error, JobTimeoutError)
        assert task.state == LifecycleState.PROCESSING
        download_session.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_job_error_while_polling(self, client, session, endpoint):
        session.post.side_effect = [
            make_response(body=QUEUED),
            make_response(body={"status": "failed", "error": "bad prompt"}),
        ]
        registry, executor, _ = build_registry(client)
        seen = record_events(registry.events)

        try:
            with pytest.raises(JobError):
                await registry.generate(JobRequest(config=endpoint, prompt="a red fox"))
            await drain()
        finally:
            executor.shutdown()

        assert [name for name, _ in seen] == ["started", "failed", "completed"]
        task = seen[-1][1]
        assert task.outcome == TaskOutcome.FAILED
        assert task.state == LifecycleState.FAILED

    @pytest.mark.asyncio
    async def test_submit_failure_finalizes_task(self, client, session, endpoint):
        session.post.return_value = make_response(status_code=500)
        registry, executor, _ = build_registry(client)
        seen = record_events(registry.events)

        try:
            with pytest.raises(TransportError):
                await registry.submit(JobRequest(config=endpoint, prompt="a red fox"))
            await drain()
        finally:
            executor.shutdown()

        assert [name for name, _ in seen] == ["started", "failed", "completed"]
        assert registry.active_tasks() == []

    @pytest.mark.asyncio
    async def test_asset_failure_aborts_all(self, client, session, endpoint):
        session.post.side_effect = [
            make_response(body=QUEUED),
            make_response(body={
                "id": "j1",
                "status": "complete",
                "images": [{"url": "http://x/0.png"}, {"url": "http://x/1.png"}],
            }),
        ]
        registry, executor, download_session = build_registry(client)
        download_session.get.side_effect = [
            make_response(content=png_bytes()),
            make_response(status_code=404),
        ]
        delivered = []
        on_images = MagicMock()
        seen = record_events(registry.events)

        try:
            with pytest.raises(TransportError):
                await registry.generate(
                    JobRequest(config=endpoint, prompt="a red fox"),
                    on_image=lambda index, image: delivered.append(index),
                    on_images=on_images,
                )
            await drain()
        finally:
            executor.shutdown()

        assert delivered == [0]
        on_images.assert_not_called()
        assert [name for name, _ in seen] == ["started", "failed", "completed"]

    @pytest.mark.asyncio
    async def test_get_images_requires_submission(self, client, endpoint):
        registry, executor, _ = build_registry(client)
        try:
            with pytest.raises(GenerationError):
                await registry.get_images(JobRequestTask(JobRequest(config=endpoint)))
        finally:
            executor.shutdown()


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_while_polling(self, client, session, endpoint):
        session.post.return_value = make_response(body=PROCESSING)
        holder = []
        registry, executor, download_session = build_registry(
            client, pause=lambda seconds: registry.cancel(holder[0])
        )
        seen = record_events(registry.events)

        try:
            task = await registry.submit(JobRequest(config=endpoint, prompt="a red fox"))
            holder.append(task)
            images = await registry.get_images(task)
            registry.cancel(task)
            await drain()
        finally:
            executor.shutdown()

        assert images == []
        assert [name for name, _ in seen] == ["started", "cancelled", "completed"]
        assert task.outcome == TaskOutcome.CANCELLED
        assert task.state == LifecycleState.CANCELLED
        assert session.post.call_count == 1
        download_session.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_idle_tracked_task(self, client, session, endpoint):
        session.post.return_value = make_response(body=QUEUED)
        registry, executor, _ = build_registry(client)
        seen = record_events(registry.events)

        try:
            task = await registry.submit(JobRequest(config=endpoint, prompt="a red fox"))
            registry.cancel(task)
            await drain()
            images = await registry.get_images(task)
        finally:
            executor.shutdown()

        assert images == []
        assert [name for name, _ in seen] == ["started", "cancelled", "completed"]
        assert task.state == LifecycleState.CANCELLED
        assert not registry.is_tracked(task)

    @pytest.mark.asyncio
    async def test_cancel_after_complete_skips_download(self, client, session, endpoint):
        session.post.side_effect = [make_response(body=QUEUED), make_response(body=COMPLETE)]
        holder = []
        registry, executor, download_session = build_registry(client)
        seen = record_events(registry.events)
        original_refresh = client.refresh

        def refresh_then_cancel(result):
            # The poll reports Complete, then the caller cancels.
            original_refresh(result)
            holder[0].cancel()

        client.refresh = refresh_then_cancel

        try:
            task = await registry.submit(JobRequest(config=endpoint, prompt="a red fox"))
            holder.append(task)
            images = await registry.get_images(task)
            await drain()
        finally:
            executor.shutdown()

        assert images == []
        assert [name for name, _ in seen] == ["started", "cancelled", "completed"]
        assert task.state == LifecycleState.COMPLETE
        download_session.get.assert_not_called()


    @pytest.mark.asyncio
    async def test_cancel_during_download_delivers_nothing(self, client, session, endpoint, png):
        session.post.side_effect = [make_response(body=QUEUED), make_response(body=COMPLETE)]
        holder = []
        registry, executor, download_session = build_registry(client)

        def get(url, timeout=None):
            holder[0].cancel()
            return make_response(content=png)

        download_session.get.side_effect = get
        on_image = MagicMock()
        on_images = MagicMock()
        seen = record_events(registry.events)

        try:
            task = await registry.submit(
                JobRequest(config=endpoint, prompt="a red fox"),
                on_image=on_image,
                on_images=on_images,
            )
            holder.append(task)
            images = await registry.get_images(task)
            await drain()
        finally:
            executor.shutdown()

        assert images == []
        assert task.outcome == TaskOutcome.CANCELLED
        on_image.assert_not_called()
        on_images.assert_not_called()
        assert [name for name, _ in seen] == ["started", "cancelled", "completed"]


class TestTracking:
    @pytest.mark.asyncio
    async def test_untrack_after_completed(self, client, session, endpoint):
        session.post.side_effect = [make_response(body=QUEUED), make_response(body=COMPLETE)]
        registry, executor, _ = build_registry(client)
        tracked_at_completed = []
        registry.events.completed.add_listener(
            lambda task: tracked_at_completed.append(registry.is_tracked(task))
        )

        try:
            await registry.generate(JobRequest(config=endpoint, prompt="a red fox"))
            await drain()
        finally:
            executor.shutdown()

        assert tracked_at_completed == [True]
        assert registry.active_tasks() == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, client, session, endpoint):
        session.post.side_effect = [make_response(body=QUEUED), make_response(body=COMPLETE)]
        registry, executor, _ = build_registry(client)
        completed = []

        def broken(task):
            raise RuntimeError("listener bug")

        registry.events.succeeded.add_listener(broken)
        registry.events.completed.add_listener(completed.append)

        try:
            images = await registry.generate(JobRequest(config=endpoint, prompt="a red fox"))
            await drain()
        finally:
            executor.shutdown()

        assert len(images) == 1
        assert len(completed) == 1
