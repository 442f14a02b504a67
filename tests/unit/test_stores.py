"""Behaviour shared by the in-memory and SQLite durable stores."""

import asyncio
from datetime import timedelta

import pytest

from durastep.constants import FINISHED_RECOVERY_POINT
from durastep.errors import ArgumentMismatchError
from durastep.persistence import InMemoryStore, SQLiteStore
from durastep.persistence.models import utcnow

DEFINITION = {
    "reserve": {"does": "reserve", "then": "charge"},
    "charge": {"does": "charge", "then": FINISHED_RECOVERY_POINT},
}


@pytest.fixture(params=["inmemory", "sqlite"])
def durable_store(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteStore(tmp_path / "durastep.db")
    return InMemoryStore()


def _accept(existing):
    return None


async def _bootstrap(store, key="key-1", arguments=None):
    job = {"job_class": "app.jobs:Charge", "job_id": "j1", "arguments": arguments or [1]}
    return await store.bootstrap_execution(key, job, DEFINITION, "reserve", _accept)


@pytest.mark.asyncio
async def test_bootstrap_creates_then_reuses(durable_store):
    execution, created = await _bootstrap(durable_store)
    assert created
    assert execution.recover_to == "reserve"
    assert execution.definition == DEFINITION
    assert list(execution.definition) == ["reserve", "charge"]

    again, created = await _bootstrap(durable_store, arguments=[1])
    assert not created
    assert again.id == execution.id
    assert len(await durable_store.list_executions()) == 1
    assert (await durable_store.find_execution("key-1")).id == execution.id


@pytest.mark.asyncio
async def test_bootstrap_refreshes_serialized_job(durable_store):
    execution, _ = await _bootstrap(durable_store)
    job = {"job_class": "app.jobs:Charge", "job_id": "j2", "arguments": [1]}
    refreshed, _ = await durable_store.bootstrap_execution(
        "key-1", job, DEFINITION, "reserve", _accept
    )
    assert refreshed.serialized_job["job_id"] == "j2"
    assert refreshed.last_run_at >= execution.last_run_at


@pytest.mark.asyncio
async def test_verify_failure_leaves_execution_untouched(durable_store):
    execution, _ = await _bootstrap(durable_store)

    def reject(existing):
        raise ArgumentMismatchError([2], existing.serialized_job["arguments"])

    job = {"job_class": "app.jobs:Charge", "job_id": "j3", "arguments": [2]}
    with pytest.raises(ArgumentMismatchError):
        await durable_store.bootstrap_execution("key-1", job, DEFINITION, "reserve", reject)

    stored = await durable_store.get_execution(execution.id)
    assert stored.serialized_job["job_id"] == "j1"
    assert len(await durable_store.list_executions()) == 1


@pytest.mark.asyncio
async def test_concurrent_bootstraps_create_one_execution(durable_store):
    results = await asyncio.gather(*[_bootstrap(durable_store) for _ in range(5)])
    assert sum(1 for _, created in results if created) == 1
    assert len({execution.id for execution, _ in results}) == 1


@pytest.mark.asyncio
async def test_recover_to_and_finished_filter(durable_store):
    first, _ = await _bootstrap(durable_store, key="a")
    second, _ = await _bootstrap(durable_store, key="b")
    await durable_store.update_recover_to(first.id, FINISHED_RECOVERY_POINT)

    finished = await durable_store.list_executions(finished=True)
    outstanding = await durable_store.list_executions(finished=False)
    assert [execution.id for execution in finished] == [first.id]
    assert [execution.id for execution in outstanding] == [second.id]
    assert (await durable_store.get_execution(first.id)).finished
    assert await durable_store.get_execution(9999) is None


@pytest.mark.asyncio
async def test_entries_are_ordered_and_filterable(durable_store):
    execution, _ = await _bootstrap(durable_store)
    now = utcnow()
    await durable_store.record_entry(execution.id, "charge", "started", now + timedelta(seconds=1))
    await durable_store.record_entry(execution.id, "reserve", "started", now)
    await durable_store.record_entry(execution.id, "reserve", "succeeded", now)
    await durable_store.record_entry(
        execution.id, "charge", "errored", now + timedelta(seconds=2), {"message": "boom"}
    )

    entries = await durable_store.list_entries(execution.id)
    assert [(e.step, e.action) for e in entries] == [
        ("reserve", "started"),
        ("reserve", "succeeded"),
        ("charge", "started"),
        ("charge", "errored"),
    ]
    assert entries[-1].data == {"message": "boom"}
    assert len(await durable_store.list_entries(execution.id, step="charge")) == 2
    assert len(await durable_store.list_entries(execution.id, action="started")) == 2
    assert await durable_store.has_entry(execution.id, "reserve", "succeeded")
    assert not await durable_store.has_entry(execution.id, "charge", "succeeded")


@pytest.mark.asyncio
async def test_values_upsert_and_insert_if_absent(durable_store):
    execution, _ = await _bootstrap(durable_store)
    await durable_store.set_values(execution.id, {"a": 1, "b": {"nested": [1, 2]}})
    await durable_store.set_values(execution.id, {"a": 2})

    assert await durable_store.get_values(execution.id, ["a", "b", "c"]) == {
        "a": 2,
        "b": {"nested": [1, 2]},
    }
    assert await durable_store.insert_value_if_absent(execution.id, "a", 99) == 2
    assert await durable_store.insert_value_if_absent(execution.id, "c", 3) == 3
    assert await durable_store.list_values(execution.id) == {
        "a": 2,
        "b": {"nested": [1, 2]},
        "c": 3,
    }


@pytest.mark.asyncio
async def test_clear_finished_executions(durable_store):
    finished, _ = await _bootstrap(durable_store, key="done")
    outstanding, _ = await _bootstrap(durable_store, key="running")
    await durable_store.update_recover_to(finished.id, FINISHED_RECOVERY_POINT)
    await durable_store.record_entry(finished.id, "reserve", "started", utcnow())
    await durable_store.set_values(finished.id, {"k": "v"})

    assert await durable_store.clear_finished_executions(utcnow() - timedelta(days=1)) == 0

    cleared = await durable_store.clear_finished_executions(
        utcnow() + timedelta(seconds=1), batch_size=1
    )
    assert cleared == 1
    assert await durable_store.get_execution(finished.id) is None
    assert await durable_store.list_entries(finished.id) == []
    assert await durable_store.list_values(finished.id) == {}
    assert await durable_store.get_execution(outstanding.id) is not None


@pytest.mark.asyncio
async def test_clear_finished_executions_across_batches(durable_store):
    for n in range(5):
        execution, _ = await _bootstrap(durable_store, key=f"done-{n}")
        await durable_store.update_recover_to(execution.id, FINISHED_RECOVERY_POINT)

    cleared = await durable_store.clear_finished_executions(
        utcnow() + timedelta(seconds=1), batch_size=2
    )
    assert cleared == 5
    assert await durable_store.list_executions() == []


@pytest.mark.asyncio
async def test_transaction_commits_writes(durable_store):
    execution, _ = await _bootstrap(durable_store)
    async with durable_store.transaction():
        await durable_store.set_values(execution.id, {"paid": True})
        await durable_store.update_recover_to(execution.id, "charge")

    assert await durable_store.list_values(execution.id) == {"paid": True}
    assert (await durable_store.get_execution(execution.id)).recover_to == "charge"


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(durable_store):
    execution, _ = await _bootstrap(durable_store)
    await durable_store.set_values(execution.id, {"items": [1]})

    with pytest.raises(RuntimeError):
        async with durable_store.transaction():
            await durable_store.set_values(execution.id, {"items": [1, 2], "paid": True})
            assert await durable_store.insert_value_if_absent(execution.id, "receipt", "r-1") == "r-1"
            await durable_store.record_entry(execution.id, "charge", "started", utcnow())
            raise RuntimeError("card declined")

    assert await durable_store.list_values(execution.id) == {"items": [1]}
    assert await durable_store.list_entries(execution.id) == []

    # the store is usable again afterwards
    await durable_store.set_values(execution.id, {"paid": False})
    assert (await durable_store.get_values(execution.id, ["paid"])) == {"paid": False}


@pytest.mark.asyncio
async def test_nested_transaction_rolls_back_only_inner_block(durable_store):
    execution, _ = await _bootstrap(durable_store)

    async with durable_store.transaction():
        await durable_store.set_values(execution.id, {"outer": 1})
        with pytest.raises(ValueError):
            async with durable_store.transaction():
                await durable_store.set_values(execution.id, {"inner": 2})
                raise ValueError("inner")

    assert await durable_store.list_values(execution.id) == {"outer": 1}

@pytest.mark.asyncio
async def test_sqlite_state_survives_reopen(tmp_path):
    path = tmp_path / "durastep.db"
    execution, _ = await _bootstrap(SQLiteStore(path))

    reopened = SQLiteStore(path)
    stored = await reopened.find_execution("key-1")
    assert stored is not None
    assert stored.id == execution.id
    assert stored.definition == DEFINITION
