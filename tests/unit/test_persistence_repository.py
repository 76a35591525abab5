import asyncio
import uuid

import pytest

import relayflow.persistence as persistence
from relayflow.persistence import (
    InMemoryRunRepository,
    SQLiteRunRepository,
    get_repository,
)


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteRunRepository(tmp_path / "runs.db")
    return InMemoryRunRepository()


@pytest.mark.asyncio
async def test_repository_run_lifecycle(repo):
    run_id = str(uuid.uuid4())

    assert await repo.create_run(run_id, "wf", {"email": "a@example.com"})
    assert not await repo.create_run(run_id, "wf", {"email": "other"})

    await repo.open_branches(run_id, ["exec-1"])
    await repo.mark_step_started(run_id, "trigger", "exec-1", "trigger")
    entry = {"nodeId": "trigger", "type": "trigger", "status": "success"}
    continuation = {"workflowId": "wf", "runId": run_id, "stepId": "enrich", "type": "enrich"}
    await repo.mark_step_completed(
        run_id, "trigger", "success", log_entry=entry, continuations=[continuation]
    )
    await repo.update_payload(run_id, {"company": "Acme"})

    run = await repo.get_run(run_id)
    assert run is not None
    assert run.workflow_id == "wf"
    assert run.status == "running"
    assert run.payload == {"email": "a@example.com", "company": "Acme"}
    assert run.open_branches == 1
    assert len(run.steps) == 1
    step = run.steps[0]
    assert step.step_id == "trigger"
    assert step.execution_id == "exec-1"
    assert step.status == "success"
    assert step.started_at is not None and step.completed_at is not None
    assert step.continuations == [continuation]

    assert await repo.get_execution_log(run_id) == [entry]

    assert await repo.close_branch(run_id, "exec-1") == 0
    assert await repo.mark_run_completed(run_id, "succeeded", "done")
    assert not await repo.mark_run_completed(run_id, "failed", "late")

    run = await repo.get_run(run_id)
    assert run.status == "succeeded"
    assert run.message == "done"
    assert not run.result_delivered

    await repo.mark_result_delivered(run_id)
    assert (await repo.get_run(run_id)).result_delivered

    all_runs = await repo.list_runs()
    assert any(r.run_id == run_id for r in all_runs)


@pytest.mark.asyncio
async def test_repository_first_arrival_owns_step(repo):
    run_id = str(uuid.uuid4())
    await repo.create_run(run_id, "wf", {})

    assert await repo.mark_step_started(run_id, "join", "exec-a", "enrich")
    assert not await repo.mark_step_started(run_id, "join", "exec-b", "enrich")
    assert not await repo.mark_step_started(run_id, "join", "exec-a", "enrich")
    await repo.mark_step_completed(run_id, "join", "success", log_entry={"n": 1})
    await repo.mark_step_completed(run_id, "join", "failed", log_entry={"n": 2})

    step = await repo.get_step(run_id, "join")
    assert step.execution_id == "exec-a"
    assert step.status == "success"
    assert step.log_entry == {"n": 1}
    assert len((await repo.get_run(run_id)).steps) == 1
    assert await repo.get_step(run_id, "missing") is None


@pytest.mark.asyncio
async def test_repository_stale_claim_can_be_taken_back(repo):
    run_id = str(uuid.uuid4())
    await repo.create_run(run_id, "wf", {})

    assert await repo.mark_step_started(run_id, "enrich", "exec-a", "enrich")
    assert not await repo.mark_step_started(run_id, "enrich", "exec-a", "enrich", lease=3600)
    await asyncio.sleep(0.01)
    # only the same execution may take back an unfinished claim
    assert not await repo.mark_step_started(run_id, "enrich", "exec-b", "enrich", lease=0)
    assert await repo.mark_step_started(run_id, "enrich", "exec-a", "enrich", lease=0)

    await repo.mark_step_completed(run_id, "enrich", "success", log_entry={"n": 1})
    await asyncio.sleep(0.01)
    assert not await repo.mark_step_started(run_id, "enrich", "exec-a", "enrich", lease=0)
    assert (await repo.get_step(run_id, "enrich")).status == "success"


@pytest.mark.asyncio
async def test_repository_branch_accounting_is_idempotent(repo):
    run_id = str(uuid.uuid4())
    await repo.create_run(run_id, "wf", {})

    await repo.open_branches(run_id, ["a", "b"])
    await repo.open_branches(run_id, ["a"])
    assert await repo.close_branch(run_id, "a") == 1
    assert await repo.close_branch(run_id, "a") == 1
    # reopening a closed branch has no effect
    await repo.open_branches(run_id, ["a"])
    assert await repo.close_branch(run_id, "b") == 0


@pytest.mark.asyncio
async def test_sqlite_repository_survives_restart(tmp_path):
    db_path = tmp_path / "runs.db"
    repo = SQLiteRunRepository(db_path)
    await repo.create_run("run-1", "wf", {"x": 1})
    await repo.open_branches("run-1", ["a"])

    reopened = SQLiteRunRepository(db_path)
    run = await reopened.get_run("run-1")
    assert run.payload == {"x": 1}
    assert run.open_branches == 1


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("RELAYFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("RELAYFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    persistence._repository_instance = None

    repo = get_repository(f"sqlite://{tmp_path / 'runs.db'}")
    assert isinstance(repo, SQLiteRunRepository)
    assert get_repository() is repo

    memory = get_repository("sqlite://")
    assert isinstance(memory, SQLiteRunRepository)
    assert memory.db_path == ":memory:"

    with pytest.raises(ValueError, match="Unsupported database backend"):
        get_repository("mysql://localhost/db")

    persistence._repository_instance = None
    assert isinstance(get_repository(), InMemoryRunRepository)
    persistence._repository_instance = None
