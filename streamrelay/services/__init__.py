"""Services layer for streamrelay."""

from streamrelay.services.cancel import CancelCoordinator
from streamrelay.services.container import TaskServices, build_services, build_store, prepare_store
from streamrelay.services.reconciler import Reconciliation, StatusReconciler
from streamrelay.services.relay import StreamRelay
from streamrelay.services.resume import PollPolicy, ResumeCoordinator
from streamrelay.services.store import (
    InMemoryTaskStore,
    SqlTaskStore,
    TaskStore,
    load_authorized,
)
from streamrelay.services.upstream import (
    JobRequest,
    OpenAIResponsesProvider,
    UpstreamJob,
    UpstreamProvider,
)

__all__ = [
    "CancelCoordinator",
    "TaskServices",
    "build_services",
    "build_store",
    "prepare_store",
    "Reconciliation",
    "StatusReconciler",
    "StreamRelay",
    "PollPolicy",
    "ResumeCoordinator",
    "InMemoryTaskStore",
    "SqlTaskStore",
    "TaskStore",
    "load_authorized",
    "JobRequest",
    "OpenAIResponsesProvider",
    "UpstreamJob",
    "UpstreamProvider",
]
