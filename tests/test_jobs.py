"""Tests for the job table and signal delivery."""

import os
import shutil
import signal
import threading

import pytest

from pipeshell import dsl
from pipeshell.errors import JobNotFound, SignalDeliveryFailed
from pipeshell.jobs import JobTable, parse_signal
from pipeshell.model import JobStatus

pytestmark = pytest.mark.skipif(shutil.which("sleep") is None, reason="needs sleep(1)")


class TestParseSignal:
    @pytest.mark.parametrize("spec", ["KILL", "SIGKILL", "kill", 9, "9", signal.SIGKILL])
    def test_accepted_spellings(self, spec):
        assert parse_signal(spec) is signal.SIGKILL

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            parse_signal("NOPE")


class TestJobTable:
    def test_jobs_listed_in_registration_order(self, controller):
        chain = dsl.pipeline(dsl.command("sleep", "5"), dsl.command("sleep", "5"), dsl.command("sleep", "5"))
        jobs = controller.execute(chain)
        try:
            assert controller.jobs.all() == jobs
            assert [j.stage for j in controller.jobs.all()] == [0, 1, 2]
        finally:
            for j in jobs:
                controller.kill(j, "KILL")
            controller.wait_all(jobs)

    def test_get_and_unregister(self, controller):
        (job,) = controller.execute(dsl.command("true"))
        controller.wait(job)
        table = controller.jobs
        assert table.get(job.id) is job
        table.unregister(job)
        assert job not in table
        with pytest.raises(JobNotFound):
            table.get(job.id)
        with pytest.raises(JobNotFound):
            table.unregister(job)

    def test_finished_jobs_are_retained_until_pruned(self, controller):
        (job,) = controller.execute(dsl.command("true"))
        controller.wait(job)
        assert job in controller.jobs
        assert controller.jobs.active() == []
        assert controller.jobs.prune() == [job]
        assert len(controller.jobs) == 0

    def test_signal_running_job(self, controller):
        (job,) = controller.execute(dsl.command("sleep", "30"))
        controller.jobs.signal(job, "TERM")
        status = controller.wait(job)
        assert status == JobStatus.signaled(signal.SIGTERM)
        assert str(status) == "signaled(SIGTERM)"

    def test_signal_exited_job_fails_without_touching_others(self, controller):
        (done,) = controller.execute(dsl.command("true"))
        (running,) = controller.execute(dsl.command("sleep", "30"))
        controller.wait(done)
        with pytest.raises(SignalDeliveryFailed):
            controller.jobs.signal(done, "KILL")
        assert running.poll() == JobStatus.running()
        controller.jobs.signal(running, "KILL")
        assert controller.wait(running) == JobStatus.signaled(signal.SIGKILL)

    def test_signal_unregistered_job(self, controller):
        (job,) = controller.execute(dsl.command("true"))
        controller.wait(job)
        with pytest.raises(JobNotFound):
            JobTable().signal(job, "TERM")

    def test_signal_with_bad_name(self, controller):
        (job,) = controller.execute(dsl.command("sleep", "30"))
        try:
            with pytest.raises(SignalDeliveryFailed, match="unknown signal"):
                controller.jobs.signal(job, "BOGUS")
        finally:
            controller.kill(job, "KILL")
            controller.wait(job)

    def test_signal_job_reaped_behind_its_back(self, controller, monkeypatch):
        """A pid collected by someone else between the status check and kill(2)."""
        (job,) = controller.execute(dsl.command("true"))
        os.waitpid(job.pid, 0)
        real_poll = job.poll
        first = iter([JobStatus.running()])
        monkeypatch.setattr(job, "poll", lambda: next(first, None) or real_poll())
        with pytest.raises(SignalDeliveryFailed):
            controller.jobs.signal(job, "TERM")

    def test_concurrent_pipelines_register_every_job(self, controller):
        results = []

        def launch():
            results.extend(controller.execute(dsl.pipe(dsl.command("true"), dsl.command("true"))))

        threads = [threading.Thread(target=launch) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        controller.wait_all(results)
        assert len(controller.jobs) == 16
        assert {j.id for j in controller.jobs.all()} == {j.id for j in results}
        assert all(s.ok for s in (j.status for j in results))


class TestJobStatus:
    def test_from_returncode(self):
        assert JobStatus.from_returncode(None) == JobStatus.running()
        assert JobStatus.from_returncode(3) == JobStatus.exited(3)
        assert JobStatus.from_returncode(-9) == JobStatus.signaled(9)

    def test_terminal_status_never_changes(self, controller):
        (job,) = controller.execute(dsl.command("false"))
        first = controller.wait(job)
        assert first == JobStatus.exited(1)
        assert job.poll() is first
        assert job._settle(JobStatus.exited(0)) is first
