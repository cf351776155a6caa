from unittest.mock import MagicMock

import pytest

from jobnet.etl.dependency import RootJobNet
from jobnet.etl.errors import DoubleLockError, JobFailure, JobNetAborted, ParameterError
from jobnet.etl.executor import InlineExecutor
from jobnet.etl.job import RunnableUnit
from jobnet.etl.orchestrator import JobNetRunner
from jobnet.etl.result import JobStatus
from jobnet.queue import FileTaskQueue, TaskQueue


class FakeCompiler:
    def __init__(self, actions):
        self.actions = actions
        self.compiled = []

    def compile(self, ref):
        self.compiled.append(ref.name)
        if ref.name not in self.actions:
            raise ParameterError(f"no such job file: {ref}")
        return RunnableUnit(ref, "test", self.actions[ref.name])


def recorder(calls, name, ok=True):
    def action():
        calls.append(name)
        if not ok:
            raise JobFailure(f"{name} failed")
    return action


def make_runner(actions):
    return JobNetRunner(FakeCompiler(actions), InlineExecutor(), metrics=MagicMock())


@pytest.fixture
def chain():
    return RootJobNet.parse("job1 -> job2\njob2 -> job3", "dwh")


class TestSequentialRun:
    def test_all_jobs_succeed(self, chain, tmp_path):
        calls = []
        runner = make_runner({n: recorder(calls, n) for n in ("job1", "job2", "job3")})
        queue = FileTaskQueue(tmp_path / "dwh.chain.queue")

        result = runner.execute(chain, queue)

        assert result.is_success
        assert calls == ["job1", "job2", "job3"]
        assert not queue.queued()
        assert not queue.locked()
        runner.metrics.record_jobnet_execution.assert_called_once_with("dwh/main", "success")

    def test_failure_stops_the_run_and_keeps_the_failed_job_queued(self, chain, tmp_path):
        calls = []
        runner = make_runner({
            "job1": recorder(calls, "job1"),
            "job2": recorder(calls, "job2", ok=False),
            "job3": recorder(calls, "job3"),
        })
        queue = FileTaskQueue(tmp_path / "dwh.chain.queue")
        runner.prepare(chain, queue)

        result = runner.run(chain, queue)

        assert result.status is JobStatus.FAILURE
        assert result.exit_code == 1
        assert result.ref.name == "job2"
        assert calls == ["job1", "job2"]
        restored = FileTaskQueue.restore_if_exist(queue.path)
        assert [t.ref.name for t in restored] == ["job2", "job3"]
        assert not restored.locked()

    def test_next_run_resumes_at_the_failed_job(self, chain, tmp_path):
        path = tmp_path / "dwh.chain.queue"
        calls = []
        failing = make_runner({
            "job1": recorder(calls, "job1"),
            "job2": recorder(calls, "job2", ok=False),
            "job3": recorder(calls, "job3"),
        })
        with pytest.raises(JobNetAborted) as excinfo:
            failing.execute(chain, FileTaskQueue(path))
        assert excinfo.value.result.exit_code == 1

        calls.clear()
        fixed = make_runner({n: recorder(calls, n) for n in ("job1", "job2", "job3")})
        assert fixed.execute(chain, FileTaskQueue(path)).is_success
        assert calls == ["job2", "job3"]
        assert not path.exists()

    def test_compile_error_is_an_error_result(self, chain):
        calls = []
        runner = make_runner({"job1": recorder(calls, "job1")})
        queue = TaskQueue()
        runner.prepare(chain, queue)

        result = runner.run(chain, queue)

        assert result.status is JobStatus.ERROR
        assert result.exit_code == 2
        assert result.ref.name == "job2"
        assert calls == ["job1"]
        assert [t.ref.name for t in queue] == ["job2", "job3"]

    def test_unexpected_exception_is_an_error_result(self, chain):
        def boom():
            raise KeyError("missing column")

        runner = make_runner({"job1": boom, "job2": lambda: None, "job3": lambda: None})
        queue = TaskQueue()
        runner.prepare(chain, queue)
        assert runner.run(chain, queue).status is JobStatus.ERROR

    def test_locked_queue_is_not_resumed(self, chain, tmp_path):
        queue = FileTaskQueue(tmp_path / "dwh.chain.queue")
        queue.enqueue(chain.execution_order())
        queue.lock()
        runner = make_runner({})

        with pytest.raises(DoubleLockError, match="remove the file"):
            runner.execute(chain, FileTaskQueue(queue.path))
        assert runner.compiler.compiled == []

    def test_stale_lock_without_queue_file_leaves_no_queue(self, chain, tmp_path):
        queue = FileTaskQueue(tmp_path / "dwh.chain.queue")
        queue.lock()
        runner = make_runner({})

        with pytest.raises(DoubleLockError):
            runner.execute(chain, FileTaskQueue(queue.path))
        assert not queue.path.exists()
        assert queue.locked()

    def test_check_compiles_every_job(self, chain):
        runner = make_runner({"job1": None, "job2": None, "job3": None})
        assert [u.ref.name for u in runner.check(chain)] == ["job1", "job2", "job3"]

    def test_check_reports_broken_job(self, chain):
        with pytest.raises(ParameterError):
            make_runner({"job1": None}).check(chain)


def marker_job(tmp_path, name, after=(), ok=True):
    """A job that fails unless every upstream marker exists, then leaves its own."""
    def action():
        missing = [dep for dep in after if not (tmp_path / dep).exists()]
        if missing:
            raise JobFailure(f"{name} started before {missing}")
        if not ok:
            raise JobFailure(f"{name} failed")
        (tmp_path / name).touch()
    return action


class TestParallelRun:
    def test_diamond_respects_dependencies(self, tmp_path):
        jobnet = RootJobNet.parse("a -> b\na -> c\nb -> d\nc -> d", "dwh")
        runner = make_runner({
            "a": marker_job(tmp_path, "a"),
            "b": marker_job(tmp_path, "b", ["a"]),
            "c": marker_job(tmp_path, "c", ["a"]),
            "d": marker_job(tmp_path, "d", ["b", "c"]),
        })
        queue = FileTaskQueue(tmp_path / "queue")

        result = runner.execute(jobnet, queue, n_max_jobs=2)

        assert result.is_success
        assert all((tmp_path / n).exists() for n in "abcd")
        assert not queue.queued()
        assert not queue.locked()

    def test_failure_blocks_downstream_jobs(self, tmp_path):
        jobnet = RootJobNet.parse("c\na -> b", "dwh")
        runner = make_runner({
            "a": marker_job(tmp_path, "a", ok=False),
            "b": marker_job(tmp_path, "b", ["a"]),
            "c": marker_job(tmp_path, "c"),
        })
        queue = FileTaskQueue(tmp_path / "queue")
        runner.prepare(jobnet, queue)

        result = runner.run_parallel(jobnet, queue, n_max_jobs=3)

        assert result.status is JobStatus.FAILURE
        assert result.ref.name == "a"
        assert not (tmp_path / "b").exists()
        assert (tmp_path / "c").exists()
        remaining = [t.ref.name for t in FileTaskQueue.restore_if_exist(queue.path)]
        assert remaining == ["a", "b"]

    def test_compile_error_stops_new_jobs(self, tmp_path):
        jobnet = RootJobNet.parse("a -> b", "dwh")
        runner = make_runner({"b": marker_job(tmp_path, "b")})
        queue = TaskQueue()
        runner.prepare(jobnet, queue)

        result = runner.run_parallel(jobnet, queue, n_max_jobs=2)

        assert result.status is JobStatus.ERROR
        assert runner.compiler.compiled == ["a"]
        assert queue.size() == 2
