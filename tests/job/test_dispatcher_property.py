"""Tests for job intake, dedup, priority and retention in the dispatcher."""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from media_worker.modules.job.dispatcher import JobDispatcher
from media_worker.modules.job.models import Job, JobKind, JobPhase, JobState


class GatedPipelines:
    """Pipelines that block until released and record what ran."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.started: list[str] = []
        self.active = 0
        self.peak = 0

    async def run(self, job: Job) -> None:
        self.started.append(job.key)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await self.gate.wait()
            job.transition(JobState.ready())
        finally:
            self.active -= 1

    def mapping(self) -> dict:
        return {JobKind.EXTRACT: self.run, JobKind.TRANSCODE: self.run}


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestIntake:
    """Dedup on (kind, media id)."""

    @pytest.mark.asyncio
    async def test_duplicate_returns_active_job(self) -> None:
        pipelines = GatedPipelines()
        dispatcher = JobDispatcher(pipelines.mapping(), max_concurrent=2)

        first = dispatcher.enqueue(JobKind.EXTRACT, "m1", {"videoPath": "a.mp4"})
        second = dispatcher.enqueue(JobKind.EXTRACT, "m1", {"videoPath": "b.mp4"})

        assert first.created and not second.created
        assert second.job is first.job
        assert second.accepted
        assert second.job.payload["videoPath"] == "a.mp4"

        pipelines.gate.set()
        await dispatcher.wait_idle()
        assert pipelines.started == ["m1"]

    @pytest.mark.asyncio
    async def test_kinds_are_independent(self) -> None:
        pipelines = GatedPipelines()
        dispatcher = JobDispatcher(pipelines.mapping(), max_concurrent=2)

        extract = dispatcher.enqueue(JobKind.EXTRACT, "m1")
        transcode = dispatcher.enqueue(JobKind.TRANSCODE, "m1", {"qualities": ["720p"]})

        assert extract.created and transcode.created
        assert dispatcher.get_job(JobKind.TRANSCODE, "m1") is transcode.job
        assert dispatcher.get_status("transcode:m1") is transcode.job

        pipelines.gate.set()
        await dispatcher.wait_idle()


class TestScheduling:
    """Global concurrency bound and extraction-first ordering."""

    @given(
        max_concurrent=st.integers(min_value=1, max_value=4),
        jobs=st.integers(min_value=1, max_value=10),
    )
    @settings(max_examples=30, deadline=None)
    def test_running_never_exceeds_bound(self, max_concurrent: int, jobs: int) -> None:
        async def scenario():
            pipelines = GatedPipelines()
            dispatcher = JobDispatcher(pipelines.mapping(), max_concurrent=max_concurrent)
            for i in range(jobs):
                kind = JobKind.EXTRACT if i % 2 else JobKind.TRANSCODE
                dispatcher.enqueue(kind, f"m{i}")
            await settle()

            assert dispatcher.running == min(jobs, max_concurrent)
            assert dispatcher.queued() == jobs - dispatcher.running

            pipelines.gate.set()
            await dispatcher.wait_idle()
            return pipelines

        pipelines = asyncio.run(scenario())
        assert pipelines.peak <= max_concurrent
        assert len(pipelines.started) == jobs

    @pytest.mark.asyncio
    async def test_extraction_dispatched_before_transcode(self) -> None:
        pipelines = GatedPipelines()
        dispatcher = JobDispatcher(pipelines.mapping(), max_concurrent=1)

        dispatcher.enqueue(JobKind.TRANSCODE, "first")
        dispatcher.enqueue(JobKind.TRANSCODE, "t2")
        dispatcher.enqueue(JobKind.EXTRACT, "e1")
        dispatcher.enqueue(JobKind.EXTRACT, "e2")
        await settle()
        assert dispatcher.queued(JobKind.EXTRACT) == 2

        pipelines.gate.set()
        await dispatcher.wait_idle()

        assert pipelines.started == ["transcode:first", "e1", "e2", "transcode:t2"]


class TestFailures:
    """Every job ends terminal, even when its pipeline misbehaves."""

    @pytest.mark.asyncio
    async def test_exception_marks_error(self) -> None:
        failures: list[tuple[str, str]] = []

        async def explode(job: Job) -> None:
            raise RuntimeError("decoder crashed")

        async def on_failure(job: Job, message: str) -> None:
            failures.append((job.media_id, message))
            job.error = message
            job.transition(JobState.error())

        dispatcher = JobDispatcher({JobKind.EXTRACT: explode}, on_failure=on_failure)
        job = dispatcher.enqueue(JobKind.EXTRACT, "m1").job
        await dispatcher.wait_idle()

        assert job.state.phase == JobPhase.ERROR
        assert job.error == "decoder crashed"
        assert failures == [("m1", "decoder crashed")]
        assert dispatcher.running == 0

    @pytest.mark.asyncio
    async def test_failure_handler_errors_still_end_job(self) -> None:
        async def explode(job: Job) -> None:
            raise ValueError("bad input")

        async def broken_handler(job: Job, message: str) -> None:
            raise ConnectionError("record store down")

        dispatcher = JobDispatcher({JobKind.EXTRACT: explode}, on_failure=broken_handler)
        job = dispatcher.enqueue(JobKind.EXTRACT, "m1").job
        await dispatcher.wait_idle()

        assert job.state.phase == JobPhase.ERROR
        assert job.error == "bad input"

    @pytest.mark.asyncio
    async def test_pipeline_without_result_is_error(self) -> None:
        async def noop(job: Job) -> None:
            return None

        dispatcher = JobDispatcher({JobKind.EXTRACT: noop})
        job = dispatcher.enqueue(JobKind.EXTRACT, "m1").job
        await dispatcher.wait_idle()

        assert job.state.phase == JobPhase.ERROR
        assert job.error == "Job ended without a result"

    @pytest.mark.asyncio
    async def test_failed_job_frees_slot(self) -> None:
        started: list[str] = []

        async def flaky(job: Job) -> None:
            started.append(job.media_id)
            if job.media_id == "bad":
                raise RuntimeError("boom")
            job.transition(JobState.ready())

        dispatcher = JobDispatcher({JobKind.EXTRACT: flaky}, max_concurrent=1)
        dispatcher.enqueue(JobKind.EXTRACT, "bad")
        good = dispatcher.enqueue(JobKind.EXTRACT, "good").job
        await dispatcher.wait_idle()

        assert started == ["bad", "good"]
        assert good.state.phase == JobPhase.READY


class TestRetention:
    """Terminal jobs stay queryable for the grace window, then disappear."""

    @pytest.mark.asyncio
    async def test_purged_after_retention(self) -> None:
        pipelines = GatedPipelines()
        pipelines.gate.set()
        dispatcher = JobDispatcher(pipelines.mapping(), retention_seconds=0.05)

        job = dispatcher.enqueue(JobKind.EXTRACT, "m1").job
        await dispatcher.wait_idle()
        assert dispatcher.get_status("m1") is job
        assert job.status == "ready"

        await asyncio.sleep(0.15)
        assert dispatcher.get_status("m1") is None

    @pytest.mark.asyncio
    async def test_reenqueue_during_grace_window_returns_finished_job(self) -> None:
        pipelines = GatedPipelines()
        pipelines.gate.set()
        dispatcher = JobDispatcher(pipelines.mapping(), retention_seconds=300)

        first = dispatcher.enqueue(JobKind.EXTRACT, "m1").job
        await dispatcher.wait_idle()
        assert first.status == "ready"

        again = dispatcher.enqueue(JobKind.EXTRACT, "m1")
        await dispatcher.wait_idle()

        assert not again.created
        assert again.job is first
        assert again.job.status == "ready"
        assert pipelines.started == ["m1"]

        await dispatcher.shutdown(timeout=0.05)

    @pytest.mark.asyncio
    async def test_reenqueue_after_purge_starts_new_run(self) -> None:
        pipelines = GatedPipelines()
        pipelines.gate.set()
        dispatcher = JobDispatcher(pipelines.mapping(), retention_seconds=0.05)

        first = dispatcher.enqueue(JobKind.EXTRACT, "m1").job
        await dispatcher.wait_idle()
        await asyncio.sleep(0.15)
        assert dispatcher.get_status("m1") is None

        second = dispatcher.enqueue(JobKind.EXTRACT, "m1")
        await dispatcher.wait_idle()

        assert second.created
        assert second.job.run_id != first.run_id
        assert pipelines.started == ["m1", "m1"]

    @pytest.mark.asyncio
    async def test_shutdown_drops_queued_jobs(self) -> None:
        pipelines = GatedPipelines()
        dispatcher = JobDispatcher(pipelines.mapping(), max_concurrent=1)

        dispatcher.enqueue(JobKind.EXTRACT, "m1")
        dispatcher.enqueue(JobKind.EXTRACT, "m2")
        await settle()

        await dispatcher.shutdown(timeout=0.05)

        assert dispatcher.queued() == 0
        assert pipelines.started == ["m1"]
        assert dispatcher.running == 0
