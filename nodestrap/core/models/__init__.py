"""
Domain models for nodestrap.

    from nodestrap.core.models import NodestrapConfig, Step, StepRecord, PipelineResult
"""

from nodestrap.core.models.config import NodestrapConfig
from nodestrap.core.models.step import PipelineResult, Step, StepRecord, StepState

__all__ = [
    "NodestrapConfig",
    "PipelineResult",
    "Step",
    "StepRecord",
    "StepState",
]
