"""Shared constants for durastep workflows."""

FINISHED_RECOVERY_POINT = "__DURASTEP_WORKFLOW_FINISHED__"

DEFAULT_QUEUE_NAME = "default"
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_CLEAR_BATCH_SIZE = 500


class Action:
    """Entry actions recorded by the step runner."""

    STARTED = "started"
    SUCCEEDED = "succeeded"
    ERRORED = "errored"
    HALTED = "halted"
    REPEATED = "repeated"
