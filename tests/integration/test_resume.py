"""Integration tests for resuming a job stream."""

import asyncio
import json

import pytest

from streamrelay.errors import TaskForbiddenError, TaskNotFoundError
from streamrelay.models import JobStatus
from streamrelay.services import PollPolicy, ResumeCoordinator, StatusReconciler
from streamrelay.services.resume import effective_cursor, remaining_output
from streamrelay.streaming.accumulator import StreamAccumulator
from streamrelay.streaming.classifier import classify
from streamrelay.streaming.decoder import FrameDecoder
from tests.factories import CompletedJobFactory, InProgressJobFactory, JobRecordFactory


@pytest.fixture
def resumer(store, fake_provider, fast_policy):
    return ResumeCoordinator(store, StatusReconciler(store, fake_provider), fast_policy)


async def _collect(frames) -> tuple[list[dict], bool]:
    """Decode every frame of a resume stream into payloads."""
    decoder = FrameDecoder()
    payloads = []
    async for frame in frames:
        payloads.extend(json.loads(record) for record in decoder.feed(frame))
    return payloads, decoder.done


def _statuses(payloads: list[dict]) -> list[str]:
    return [p["background"]["status"] for p in payloads if "background" in p]


class TestResume:
    async def test_resume_continues_from_checkpoint(self, store, fake_provider, resumer, test_user_id):
        record = InProgressJobFactory(owner_id=test_user_id, cursor=42, partial_output="Hello, wo")
        await store.put(record)
        fake_provider.script(
            record.job_id,
            JobStatus.IN_PROGRESS,
            (JobStatus.COMPLETED, "Hello, world!"),
        )

        frames = await resumer.resume(record.job_id, test_user_id)
        payloads, done = await _collect(frames)

        assert done
        assert _statuses(payloads) == ["in_progress", "completed"]
        assert all(p["background"]["cursor"] == 42 for p in payloads if "background" in p)

        accumulator = StreamAccumulator(record.partial_output)
        for payload in payloads:
            accumulator.apply_all(classify(json.dumps(payload)))
        assert accumulator.state.content == "Hello, world!"

        stored = await store.get(record.job_id)
        assert stored.status is JobStatus.COMPLETED
        assert stored.partial_output == "Hello, world!"

    async def test_resume_without_local_state_replays_from_start(
        self, store, fake_provider, resumer, test_user_id
    ):
        record = InProgressJobFactory(owner_id=test_user_id, cursor=42, partial_output="Hello, wo")
        await store.put(record)
        fake_provider.script(record.job_id, (JobStatus.COMPLETED, "Hello, world!"))

        payloads, done = await _collect(await resumer.resume(record.job_id, test_user_id, cursor=0))

        assert done
        assert payloads[0] == {"choices": [{"delta": {"content": "Hello, wo"}}]}
        assert all(p["background"]["cursor"] == 0 for p in payloads if "background" in p)

        accumulator = StreamAccumulator()
        for payload in payloads:
            accumulator.apply_all(classify(json.dumps(payload)))
        assert accumulator.state.content == "Hello, world!"

    async def test_cursor_behind_checkpoint_replays_while_running(
        self, store, fake_provider, resumer, test_user_id
    ):
        record = InProgressJobFactory(owner_id=test_user_id, cursor=42, partial_output="Hello, wo")
        await store.put(record)
        fake_provider.script(record.job_id, JobStatus.IN_PROGRESS, (JobStatus.COMPLETED, "Hello, world!"))

        payloads, _ = await _collect(await resumer.resume(record.job_id, test_user_id, cursor=17))

        contents = [p["choices"][0]["delta"]["content"] for p in payloads if "choices" in p]
        assert contents == ["Hello, wo", "rld!"]
        assert _statuses(payloads) == ["in_progress", "completed"]

    async def test_terminal_job_replays_stored_output(self, store, fake_provider, resumer, test_user_id):
        record = CompletedJobFactory(owner_id=test_user_id, partial_output="Final answer.")
        await store.put(record)

        payloads, done = await _collect(await resumer.resume(record.job_id, test_user_id, cursor=0))

        assert done
        assert payloads[0] == {"choices": [{"delta": {"content": "Final answer."}}]}
        assert _statuses(payloads) == ["completed"]
        assert fake_provider.retrieve_calls == []

    async def test_terminal_job_needs_no_upstream_call(self, store, fake_provider, resumer, test_user_id):
        record = CompletedJobFactory(owner_id=test_user_id)
        await store.put(record)

        payloads, done = await _collect(await resumer.resume(record.job_id, test_user_id))

        assert done
        assert _statuses(payloads) == ["completed"]
        assert not any("choices" in p for p in payloads)
        assert fake_provider.retrieve_calls == []

    async def test_owner_mismatch_fails_before_upstream(self, store, fake_provider, resumer):
        record = InProgressJobFactory(owner_id="owner-a")
        await store.put(record)

        with pytest.raises(TaskForbiddenError):
            await resumer.resume(record.job_id, "owner-b")
        assert fake_provider.retrieve_calls == []

    async def test_unowned_job_is_open(self, store, fake_provider, resumer):
        record = JobRecordFactory(owner_id=None)
        await store.put(record)
        fake_provider.script(record.job_id, (JobStatus.COMPLETED, "ok"))

        payloads, _ = await _collect(await resumer.resume(record.job_id, "anyone"))
        assert _statuses(payloads) == ["completed"]

    async def test_unknown_job(self, resumer):
        with pytest.raises(TaskNotFoundError):
            await resumer.resume("resp_missing", "anyone")

    async def test_failed_job_ends_with_error(self, store, fake_provider, resumer, test_user_id):
        record = InProgressJobFactory(owner_id=test_user_id)
        await store.put(record)
        fake_provider.script(record.job_id, JobStatus.FAILED)

        payloads, done = await _collect(await resumer.resume(record.job_id, test_user_id))

        assert done
        assert payloads[0] == {"error": {"type": "failed", "message": "Upstream job failed"}}
        assert _statuses(payloads) == ["failed"]

    async def test_poll_gives_up_after_timeout(self, store, fake_provider, test_user_id):
        record = InProgressJobFactory(owner_id=test_user_id)
        await store.put(record)
        fake_provider.fail_retrieve = True
        policy = PollPolicy(initial_seconds=0.01, max_seconds=0.01, backoff=1.0, timeout_seconds=0.05)
        resumer = ResumeCoordinator(store, StatusReconciler(store, fake_provider), policy)

        payloads, done = await _collect(await resumer.resume(record.job_id, test_user_id))

        assert done
        assert payloads[-1]["error"]["type"] == "poll_timeout"
        assert payloads[-1]["error"]["retryable"] is True
        assert set(_statuses(payloads)) == {"in_progress"}
        assert len(fake_provider.retrieve_calls) >= 2
        assert (await store.get(record.job_id)).status is JobStatus.IN_PROGRESS

    async def test_stop_token_ends_stream(self, store, fake_provider, resumer, test_user_id):
        record = InProgressJobFactory(owner_id=test_user_id)
        await store.put(record)
        fake_provider.script(record.job_id, JobStatus.IN_PROGRESS)
        stop = asyncio.Event()

        frames = await resumer.resume(record.job_id, test_user_id, stop=stop)
        received = []
        async for frame in frames:
            received.append(frame)
            stop.set()

        assert len(received) == 1
        assert (await store.get(record.job_id)).status is JobStatus.IN_PROGRESS

    async def test_concurrent_resumes_converge(self, store, fake_provider, resumer, test_user_id):
        record = JobRecordFactory(owner_id=test_user_id)
        await store.put(record)
        fake_provider.script(
            record.job_id,
            JobStatus.IN_PROGRESS,
            JobStatus.IN_PROGRESS,
            (JobStatus.COMPLETED, "shared result"),
        )

        first, second = await asyncio.gather(
            _collect(await resumer.resume(record.job_id, test_user_id)),
            _collect(await resumer.resume(record.job_id, test_user_id)),
        )

        assert _statuses(first[0])[-1] == "completed"
        assert _statuses(second[0])[-1] == "completed"
        assert (await store.get(record.job_id)).partial_output == "shared result"


class TestCursor:
    @pytest.mark.parametrize(
        "requested,expected",
        [(None, 42), (10, 10), (1000, 42), (-5, 0), (0, 0)],
    )
    def test_effective_cursor(self, requested, expected):
        record = InProgressJobFactory(cursor=42)
        assert effective_cursor(record, requested) == expected

    def test_remaining_output(self):
        assert remaining_output("Hello, world!", "Hello, wo") == "rld!"
        assert remaining_output("Different text", "Hello") == "Different text"
        assert remaining_output(None, "x") == ""
