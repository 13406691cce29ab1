"""Engine stages shared by every scenario: inject, converge, collect."""

from pipeline_chaos.core.clock import CancelToken, Clock, FakeClock, SystemClock
from pipeline_chaos.core.collector import ArtifactBundle, ArtifactCollector, ArtifactSlot, ArtifactSource
from pipeline_chaos.core.context import RunContext
from pipeline_chaos.core.injector import FaultInjector, TriggerReceipt, Workspace
from pipeline_chaos.core.poller import ConvergencePoller, ConvergenceResult, Probe
from pipeline_chaos.core.recorder import Recorder

__all__ = [
    "CancelToken",
    "Clock",
    "SystemClock",
    "FakeClock",
    "RunContext",
    "FaultInjector",
    "TriggerReceipt",
    "Workspace",
    "ConvergencePoller",
    "ConvergenceResult",
    "Probe",
    "ArtifactCollector",
    "ArtifactBundle",
    "ArtifactSlot",
    "ArtifactSource",
    "Recorder",
]
