"""Workflow definitions module."""

from workflows.rps_workflow import (
    GenerateOutcome,
    GenerateReport,
    GenerateStatus,
    OrderQueueState,
    RpsWorkflow,
    SubmitOutcome,
    SubmitReport,
    SubmitStatus,
)
from workflows.factory import build_workflow

__all__ = [
    "RpsWorkflow",
    "GenerateOutcome",
    "GenerateReport",
    "GenerateStatus",
    "OrderQueueState",
    "SubmitOutcome",
    "SubmitReport",
    "SubmitStatus",
    "build_workflow",
]
