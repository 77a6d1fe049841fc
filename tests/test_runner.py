"""Tests for the process controller."""

import os
import shutil
import sys

import pytest

from pipeshell import dsl
from pipeshell.errors import (
    CommandNotFound,
    InputFileMissing,
    OutputOpenError,
    PipelineSpawnError,
)
from pipeshell.model import JobStatus

pytestmark = pytest.mark.skipif(
    any(shutil.which(t) is None for t in ("cat", "tee", "sh", "head", "sleep")),
    reason="needs a POSIX userland",
)

# bigger than any default pipe buffer (64 KiB on Linux)
BIG = b"".join(b"line %07d 0123456789abcdefghijklmnopqrstuvwxyz\n" % i for i in range(40000))


class TestExecute:
    def test_one_job_per_stage_in_order(self, controller):
        chain = dsl.pipeline(*(dsl.command("cat") for _ in range(4)))
        chain = dsl.redirect_input(chain, dsl.from_string("x"))
        chain = dsl.redirect_output(chain, dsl.capture())
        jobs = controller.execute(chain)
        assert len(jobs) == 4
        assert [j.stage for j in jobs] == [0, 1, 2, 3]
        assert controller.jobs.all() == jobs
        assert all(s.ok for s in controller.wait_all(jobs))

    def test_single_stage(self, controller):
        buf = dsl.capture()
        jobs = controller.execute(dsl.redirect_output(dsl.command("sh", "-c", "echo hi"), buf))
        assert controller.wait_all(jobs) == [JobStatus.exited(0)]
        assert buf.text == "hi\n"

    def test_string_through_pipe_is_byte_exact(self, controller):
        buf = dsl.capture()
        chain = dsl.pipe(dsl.command("cat"), dsl.command("cat"))
        chain = dsl.redirect_output(dsl.redirect_input(chain, dsl.from_string(BIG)), buf)
        jobs = controller.execute(chain)
        controller.wait_all(jobs, timeout=60)
        assert len(BIG) > 1024 * 1024
        assert buf.getvalue() == BIG
        assert buf.done

    def test_file_through_pipe_is_byte_exact(self, controller, tmp_path):
        (tmp_path / "big.txt").write_bytes(BIG)
        chain = dsl.pipe(dsl.command("cat", "big.txt"), dsl.command("cat"))
        jobs = controller.execute(dsl.redirect_output(chain, "copy.txt"))
        controller.wait_all(jobs, timeout=60)
        assert (tmp_path / "copy.txt").read_bytes() == BIG

    def test_exit_codes_reported_per_stage(self, controller):
        chain = dsl.pipe(dsl.command("sh", "-c", "exit 3"), dsl.command("sh", "-c", "cat >/dev/null; exit 5"))
        jobs = controller.execute(chain)
        assert controller.wait_all(jobs) == [JobStatus.exited(3), JobStatus.exited(5)]

    def test_upstream_sees_eof_when_downstream_exits(self, controller):
        """head exits early; the producer must not hang on a full pipe."""
        buf = dsl.capture()
        chain = dsl.pipe(dsl.command("sh", "-c", "while :; do echo y; done"), dsl.command("head", "-n", "3"))
        jobs = controller.execute(dsl.redirect_output(chain, buf))
        statuses = controller.wait_all(jobs, timeout=30)
        assert buf.lines() == ["y", "y", "y"]
        assert statuses[1] == JobStatus.exited(0)
        assert statuses[0].terminal

    def test_string_input_larger_than_consumer_reads(self, controller):
        """Feeder copes with a reader that stops early."""
        buf = dsl.capture()
        chain = dsl.redirect_output(dsl.command("head", "-c", "10"), buf)
        jobs = controller.execute(dsl.redirect_input(chain, dsl.from_string(BIG)))
        assert controller.wait_all(jobs, timeout=30) == [JobStatus.exited(0)]
        assert buf.getvalue() == BIG[:10]

    def test_callable_command(self, controller):
        def greet(*names):
            return ["sh", "-c", "echo hello " + " ".join(names)]

        buf = dsl.capture()
        jobs = controller.execute(dsl.redirect_output(dsl.command(greet, "a", "b"), buf))
        controller.wait_all(jobs)
        assert buf.text == "hello a b\n"

    def test_alias_is_resolved(self, controller):
        controller.registry.alias("say", "sh", "-c")
        buf = dsl.capture()
        jobs = controller.execute(dsl.redirect_output(dsl.command("say", "echo aliased"), buf))
        controller.wait_all(jobs)
        assert buf.text == "aliased\n"


    def test_relative_command_runs_from_tracked_directory(self, controller, tmp_path):
        script = tmp_path / "hello.sh"
        script.write_text("#!/bin/sh\necho hello from script\n")
        script.chmod(0o755)
        assert os.getcwd() != str(tmp_path)
        buf = dsl.capture()
        statuses = controller.run(dsl.redirect_output(dsl.command("./hello.sh"), buf))
        assert statuses == [JobStatus.exited(0)]
        assert buf.text == "hello from script\n"


class TestRedirection:
    def test_append_concatenates_runs(self, controller, tmp_path):
        chain = dsl.redirect_append(dsl.redirect_input(dsl.command("cat"), dsl.from_string("run\n")), "log")
        controller.run(chain)
        controller.run(chain)
        assert (tmp_path / "log").read_text() == "run\nrun\n"

    def test_write_truncates(self, controller, tmp_path):
        for text in ("first run\n", "second\n"):
            chain = dsl.redirect_output(dsl.redirect_input(dsl.command("cat"), dsl.from_string(text)), "log")
            controller.run(chain)
        assert (tmp_path / "log").read_text() == "second\n"

    def test_buffer_output_replaced_on_rerun(self, controller):
        buf = dsl.capture()
        chain = dsl.redirect_output(dsl.redirect_input(dsl.command("cat"), dsl.from_string("a\n")), buf)
        controller.run(chain)
        controller.run(chain)
        assert buf.text == "a\n"
        assert buf.done

    def test_buffer_append_keeps_earlier_runs(self, controller):
        buf = dsl.capture()
        chain = dsl.redirect_append(dsl.redirect_input(dsl.command("cat"), dsl.from_string("a\n")), buf)
        controller.run(chain)
        controller.run(chain)
        assert buf.text == "a\na\n"

    def test_relative_paths_resolve_at_execute_time(self, controller, tmp_path):
        """A cd between composing and executing moves where files land."""
        (tmp_path / "sub").mkdir()
        chain = dsl.redirect_output(dsl.command("sh", "-c", "pwd"), "where.txt")
        controller.dirs.change("sub")
        controller.run(chain)
        assert not (tmp_path / "where.txt").exists()
        assert (tmp_path / "sub" / "where.txt").read_text().strip() == os.path.realpath(tmp_path / "sub")

    def test_input_from_file(self, controller, tmp_path):
        (tmp_path / "in.txt").write_text("from file\n")
        buf = dsl.capture()
        controller.run(dsl.redirect_output(dsl.redirect_input(dsl.command("cat"), "in.txt"), buf))
        assert buf.text == "from file\n"

    def test_hosts_tee_scenario(self, controller, tmp_path):
        """cat /etc/hosts | tee out1 >> out2"""
        hosts = tmp_path / "hosts"
        src = "/etc/hosts" if os.path.exists("/etc/hosts") else None
        hosts.write_bytes(open(src, "rb").read() if src else b"127.0.0.1 localhost\n")
        chain = dsl.pipe(dsl.command("cat", str(hosts)), dsl.command("tee", str(tmp_path / "out1")))
        chain = dsl.redirect_append(chain, str(tmp_path / "out2"))
        jobs = controller.execute(chain)
        statuses = controller.wait_all(jobs)
        assert statuses == [JobStatus.exited(0), JobStatus.exited(0)]
        assert (tmp_path / "out1").read_bytes() == hosts.read_bytes()
        assert (tmp_path / "out2").read_bytes() == hosts.read_bytes()


class TestFailures:
    def test_command_not_found_names_stage(self, controller):
        chain = dsl.pipe(dsl.command("sleep", "30"), dsl.command("no-such-command-pipeshell"))
        with pytest.raises(CommandNotFound) as exc:
            controller.execute(chain)
        err = exc.value
        assert err.stage == 1
        assert isinstance(err, PipelineSpawnError)
        # the earlier stage is left running
        assert len(err.jobs) == 1
        assert err.jobs[0].poll() == JobStatus.running()
        controller.kill(err.jobs[0], "KILL")
        controller.wait(err.jobs[0])

    def test_buffer_released_when_last_stage_never_starts(self, controller):
        buf = dsl.capture()
        chain = dsl.redirect_output(dsl.pipe(dsl.command("true"), dsl.command("no-such-command-pipeshell")), buf)
        with pytest.raises(CommandNotFound) as exc:
            controller.execute(chain)
        controller.wait_all(exc.value.jobs)
        assert buf.wait(timeout=2)
        assert buf.getvalue() == b""

    def test_earlier_stage_sees_broken_pipe(self, controller):
        chain = dsl.pipe(dsl.command("sh", "-c", "while :; do echo y; done"), dsl.command("no-such-command-pipeshell"))
        with pytest.raises(CommandNotFound) as exc:
            controller.execute(chain)
        (producer,) = exc.value.jobs
        status = controller.wait(producer, timeout=30)
        assert status.terminal

    def test_missing_input_file(self, controller):
        chain = dsl.redirect_input(dsl.command("cat"), "missing.txt")
        with pytest.raises(InputFileMissing) as exc:
            controller.execute(chain)
        assert exc.value.stage == 0
        assert exc.value.jobs == []
        assert controller.jobs.all() == []

    def test_unwritable_output(self, controller, tmp_path):
        chain = dsl.redirect_output(dsl.command("cat"), tmp_path / "no" / "dir" / "out")
        with pytest.raises(OutputOpenError):
            controller.execute(chain)

    def test_spawn_failure_wrapped(self, controller, tmp_path):
        script = tmp_path / "broken"
        script.write_text("#!/nonexistent/interpreter\n")
        script.chmod(0o755)
        with pytest.raises(PipelineSpawnError) as exc:
            controller.execute(dsl.command(str(script)))
        assert exc.value.stage == 0
        assert type(exc.value) is PipelineSpawnError

    def test_no_descriptor_leak(self, controller):
        if not os.path.isdir("/proc/self/fd"):
            pytest.skip("needs /proc")
        before = len(os.listdir("/proc/self/fd"))
        for _ in range(5):
            chain = dsl.redirect_output(dsl.pipeline(dsl.command("cat"), dsl.command("cat")), dsl.capture())
            chain = dsl.redirect_input(chain, dsl.from_string("x"))
            controller.run(chain)
            with pytest.raises(CommandNotFound):
                controller.execute(dsl.pipe(dsl.command("true"), dsl.command("no-such-command-pipeshell")))
        for job in controller.jobs.all():
            job.wait()
        assert len(os.listdir("/proc/self/fd")) == before


def test_wait_targets_only_its_own_process(controller):
    slow = controller.execute(dsl.command("sleep", "30"))[0]
    fast = controller.execute(dsl.command(sys.executable, "-c", "raise SystemExit(7)"))[0]
    assert controller.wait(fast, timeout=30) == JobStatus.exited(7)
    assert slow.poll() == JobStatus.running()
    controller.kill(slow, "KILL")
    controller.wait(slow)
