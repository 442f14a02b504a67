"""durastep: durable, resumable step workflows for background jobs."""

from .context import Context
from .contracts import AwaitedBy, Continue, Halt, JobHandle, Repeat, SerializedJob
from .engine import WorkflowEngine, get_engine, set_engine
from .job import Job
from .persistence import get_store
from .plugins import AwaitsPlugin, Plugin, PluginContext, TransactionalStepPlugin
from .queues import get_queue
from .runner import StepRun
from .worker import Worker

__version__ = "0.1.0"
__all__ = [
    "AwaitedBy",
    "AwaitsPlugin",
    "Context",
    "Continue",
    "Halt",
    "Job",
    "JobHandle",
    "Plugin",
    "PluginContext",
    "Repeat",
    "SerializedJob",
    "StepRun",
    "TransactionalStepPlugin",
    "WorkflowEngine",
    "Worker",
    "get_engine",
    "get_queue",
    "get_store",
    "set_engine",
]
