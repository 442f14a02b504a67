"""Shared fixtures: an in-memory engine installed as the process default."""

import pytest

import durastep.persistence as persistence
from durastep.engine import WorkflowEngine, set_engine
from durastep.persistence import InMemoryStore
from durastep.queues import InMemoryJobQueue
from durastep.worker import Worker


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    for name in ("DURASTEP_CONFIG", "DURASTEP_DATABASE_URL", "DATABASE_URL", "DURASTEP_QUEUE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    set_engine(None)
    persistence._store_instance = None


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def engine(store, queue) -> WorkflowEngine:
    engine = WorkflowEngine(store=store, queue=queue)
    set_engine(engine)
    return engine


@pytest.fixture
def worker(engine, queue) -> Worker:
    return Worker(queue=queue, engine=engine)
