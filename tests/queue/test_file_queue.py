import pytest

from jobnet.etl.errors import DoubleLockError, JobFailure
from jobnet.etl.reference import JobRef
from jobnet.etl.result import JobResult
from jobnet.queue import FileTaskQueue, JobTask, TaskQueue


def refs(*names):
    return [JobRef("dwh", name) for name in names]


@pytest.fixture
def queue_path(tmp_path):
    return tmp_path / "queue" / "dwh.daily.queue"


class TestFileTaskQueue:
    def test_draining_yields_the_enqueued_order(self, queue_path):
        queue = FileTaskQueue(queue_path)
        order = refs("a", "b", "c", "d")
        queue.enqueue(order)

        drained = []
        while not queue.empty():
            drained.append(queue.dequeue().ref)
        assert drained == order

    def test_persisted_format_is_one_ref_per_line(self, queue_path):
        FileTaskQueue(queue_path).enqueue(refs("a", "b"))
        assert queue_path.read_text(encoding="utf-8") == "dwh/a\ndwh/b\n"
        assert not queue_path.with_name(queue_path.name + ".tmp").exists()

    def test_reopened_queue_resumes_after_consumed_entries(self, queue_path):
        queue = FileTaskQueue(queue_path)
        queue.enqueue(refs("a", "b", "c", "d"))
        queue.dequeue()
        queue.dequeue()
        del queue

        reopened = FileTaskQueue.restore_if_exist(queue_path)
        assert reopened.size() == 2
        assert [t.ref for t in reopened] == refs("c", "d")

    def test_empty_queue_has_no_file(self, queue_path):
        queue = FileTaskQueue(queue_path)
        queue.enqueue(refs("a"))
        assert queue.queued()
        queue.dequeue()
        assert not queue_path.exists()
        assert not queue.queued()

    def test_restore_if_exist_without_file(self, queue_path):
        queue = FileTaskQueue.restore_if_exist(queue_path)
        assert queue.empty()
        assert queue.peek() is None

    def test_remove_specific_task(self, queue_path):
        queue = FileTaskQueue(queue_path)
        queue.enqueue(refs("a", "b", "c"))
        queue.remove(list(queue)[1])
        assert [t.ref.name for t in FileTaskQueue.restore_if_exist(queue_path)] == ["a", "c"]

    def test_cancel_removes_the_queue(self, queue_path):
        queue = FileTaskQueue(queue_path)
        queue.enqueue(refs("a", "b"))
        queue.cancel_jobnet(None, "operator request")
        assert queue.empty()
        assert not queue_path.exists()


class TestLocking:
    def test_lock_file(self, queue_path):
        queue = FileTaskQueue(queue_path)
        queue.lock()
        assert queue.lock_path.exists()
        assert queue.locked()
        assert FileTaskQueue(queue_path).locked()
        queue.unlock()
        assert not queue.locked()

    def test_double_lock(self, queue_path):
        FileTaskQueue(queue_path).lock()
        with pytest.raises(DoubleLockError) as excinfo:
            FileTaskQueue(queue_path).lock()
        assert str(queue_path) + ".LOCK" in excinfo.value.help

    def test_consume_each_on_locked_queue_never_calls_worker(self, queue_path):
        queue = FileTaskQueue(queue_path)
        queue.enqueue(refs("a"))
        FileTaskQueue(queue_path).lock()
        calls = []

        with pytest.raises(DoubleLockError):
            queue.consume_each(lambda task: calls.append(task) or JobResult.success())
        assert calls == []
        assert queue.size() == 1

    def test_lock_released_after_success(self, queue_path):
        queue = FileTaskQueue(queue_path)
        queue.enqueue(refs("a", "b"))
        seen = []

        assert queue.consume_each(lambda task: seen.append(task.ref.name) or JobResult.success()) is None
        assert seen == ["a", "b"]
        assert not queue.locked()
        assert not queue_path.exists()

    def test_lock_released_when_worker_raises(self, queue_path):
        queue = FileTaskQueue(queue_path)
        queue.enqueue(refs("a", "b"))

        def worker(task):
            raise RuntimeError("worker bug")

        with pytest.raises(RuntimeError):
            queue.consume_each(worker)
        assert not queue.locked()
        assert [t.ref.name for t in FileTaskQueue.restore_if_exist(queue_path)] == ["a", "b"]

    def test_failed_job_stays_at_head(self, queue_path):
        queue = FileTaskQueue(queue_path)
        queue.enqueue(refs("a", "b", "c"))

        def worker(task):
            if task.ref.name == "b":
                return JobResult.failure(JobFailure("bad rows"))
            return JobResult.success()

        result = queue.consume_each(worker)
        assert result.describe() == "bad rows"
        assert queue.peek().ref.name == "b"
        assert not queue.locked()


class TestMemoryQueue:
    def test_locking_context(self):
        queue = TaskQueue()
        with queue.locking():
            assert queue.locked()
            with pytest.raises(DoubleLockError):
                queue.lock()
        assert not queue.locked()

    def test_dequeue_empty(self):
        with pytest.raises(IndexError):
            TaskQueue().dequeue()

    def test_task_serialization(self):
        task = JobTask.deserialize("mart/summary", 3)
        assert task.ref == JobRef("mart", "summary")
        assert task.sequence == 3
        assert task.serialize() == "mart/summary"
