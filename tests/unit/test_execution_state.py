import pytest

from graphrun.errors import (
    ExecutionConflictError,
    InvalidStatusTransition,
    NotFoundError,
    WorkflowExecutionError,
)
from graphrun.persistence import InMemoryExecutionRepository, SQLiteExecutionRepository
from graphrun.persistence.models import ExecutionStatus
from graphrun.state import ExecutionState


@pytest.mark.asyncio
async def test_create_persists_pending_state_with_copied_context():
    repo = InMemoryExecutionRepository()
    initial = {"items": [1]}

    state = await ExecutionState.create("wf-1", "user-1", initial, total_steps=2, repository=repo)
    initial["items"].append(2)

    assert state.status == ExecutionStatus.PENDING
    assert state.get_context() == {"items": [1]}
    assert state.get_checkpoints() == ()
    assert state.get_resume_point() is None
    assert not state.can_resume()

    stored = await repo.get_execution(state.execution_id)
    assert stored.status == ExecutionStatus.PENDING
    assert stored.initial_context == {"items": [1]}
    assert stored.total_steps == 2


@pytest.mark.asyncio
async def test_context_mutations_stay_in_memory_until_checkpoint():
    repo = InMemoryExecutionRepository()
    state = await ExecutionState.create("wf-1", "user-1", {"a": 1}, repository=repo)
    await state.mark_running()

    state.update_context({"b": 2})
    state.increment_step()
    stored = await repo.get_execution(state.execution_id)
    assert stored.context == {"a": 1}

    checkpoint = await state.create_checkpoint("n1", "First")

    assert checkpoint.sequence == 1
    assert checkpoint.step_number == 1
    assert checkpoint.context == {"a": 1, "b": 2}
    stored = await repo.get_execution(state.execution_id)
    assert stored.context == {"a": 1, "b": 2}
    assert stored.current_step == 1
    assert [c.node_id for c in stored.checkpoints] == ["n1"]

    state.set_context({"replaced": True})
    assert state.get_context() == {"replaced": True}
    assert checkpoint.context == {"a": 1, "b": 2}


@pytest.mark.asyncio
async def test_get_context_returns_a_copy():
    state = await ExecutionState.create(
        "wf-1", "user-1", {"nested": {"x": 1}}, repository=InMemoryExecutionRepository()
    )

    snapshot = state.get_context()
    snapshot["nested"]["x"] = 99

    assert state.get_context() == {"nested": {"x": 1}}


@pytest.mark.asyncio
async def test_error_checkpoint_forces_failed_and_is_resumable():
    repo = InMemoryExecutionRepository()
    state = await ExecutionState.create("wf-1", "user-1", {}, repository=repo)
    await state.mark_running()
    state.increment_step()
    await state.create_checkpoint("a", "A")

    error = WorkflowExecutionError("wf-1", "b", "exploded")
    checkpoint = await state.create_error_checkpoint("b", "B", error)

    assert checkpoint.error == "exploded"
    assert checkpoint.sequence == 2
    assert state.status == ExecutionStatus.FAILED
    assert state.can_resume()
    point = state.get_resume_point()
    assert point.node_id == "b"
    assert point.step_number == 1
    assert point.failed
    assert state.checkpointed_node_ids() == {"a", "b"}

    reloaded = await ExecutionState.resume(state.execution_id, repo)
    assert reloaded.status == ExecutionStatus.FAILED
    assert reloaded.error == "exploded"
    assert reloaded.get_last_checkpoint().error == "exploded"


@pytest.mark.asyncio
async def test_pause_and_terminal_transitions():
    repo = InMemoryExecutionRepository()
    state = await ExecutionState.create("wf-1", "user-1", {}, repository=repo)

    with pytest.raises(InvalidStatusTransition):
        state.set_status(ExecutionStatus.PAUSED)

    await state.mark_running()
    state.set_status(ExecutionStatus.PAUSED)
    await state.create_checkpoint("p", "Pause", branch="approve")
    assert state.can_resume()
    assert state.get_resume_point().branch == "approve"

    reloaded = await ExecutionState.resume(state.execution_id, repo)
    assert reloaded.status == ExecutionStatus.PAUSED
    await reloaded.mark_running()
    await reloaded.mark_completed()

    stored = await repo.get_execution(state.execution_id)
    assert stored.status == ExecutionStatus.COMPLETED
    assert stored.completed_at is not None
    assert not reloaded.can_resume()
    with pytest.raises(InvalidStatusTransition):
        reloaded.set_status(ExecutionStatus.RUNNING)


@pytest.mark.asyncio
async def test_mark_failed_records_error():
    repo = InMemoryExecutionRepository()
    state = await ExecutionState.create("wf-1", "user-1", {}, repository=repo)
    await state.mark_running()

    await state.mark_failed(TimeoutError("too slow"))

    stored = await repo.get_execution(state.execution_id)
    assert stored.status == ExecutionStatus.FAILED
    assert stored.error == "too slow"
    # failed without checkpoints has nothing to resume from
    assert not state.can_resume()


@pytest.mark.asyncio
async def test_second_claim_on_same_version_conflicts(tmp_path):
    repo = SQLiteExecutionRepository(tmp_path / "claims.db")
    state = await ExecutionState.create("wf-1", "user-1", {}, repository=repo)
    await state.mark_running()
    state.set_status(ExecutionStatus.PAUSED)
    await state.create_checkpoint("p", "Pause")

    first = await ExecutionState.resume(state.execution_id, repo)
    second = await ExecutionState.resume(state.execution_id, repo)

    await first.mark_running()
    with pytest.raises(ExecutionConflictError):
        await second.mark_running()

    stored = await repo.get_execution(state.execution_id)
    assert stored.status == ExecutionStatus.RUNNING
    assert stored.version == first.version


@pytest.mark.asyncio
async def test_resume_unknown_execution_raises_not_found():
    with pytest.raises(NotFoundError):
        await ExecutionState.resume("nope", InMemoryExecutionRepository())


@pytest.mark.asyncio
async def test_to_record_snapshot_includes_checkpoints():
    state = await ExecutionState.create(
        "wf-1", "user-1", {"k": "v"}, repository=InMemoryExecutionRepository()
    )
    await state.mark_running()
    state.increment_step()
    await state.create_checkpoint("a", "A")

    record = state.to_record()

    assert record.id == state.execution_id
    assert record.status == ExecutionStatus.RUNNING
    assert [c.node_id for c in record.checkpoints] == ["a"]
    assert state.to_record(include_checkpoints=False).checkpoints == []


class _RejectingRepository(InMemoryExecutionRepository):
    async def append_checkpoint(self, record, checkpoint):
        raise ConnectionError("database went away")


@pytest.mark.asyncio
async def test_failed_checkpoint_write_does_not_advance_step():
    repo = _RejectingRepository()
    state = await ExecutionState.create("wf-1", "user-1", {}, repository=repo)
    await state.mark_running()
    state.increment_step()

    with pytest.raises(ConnectionError):
        await state.create_checkpoint("a", "A")

    assert state.current_step == 0
    assert state.get_checkpoints() == ()
    await state.mark_failed("database went away")
    stored = await repo.get_execution(state.execution_id)
    assert stored.current_step == 0
    assert stored.checkpoints == []
