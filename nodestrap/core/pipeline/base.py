"""
Provisioning pipeline — a fixed, named, dependency-ordered list of steps.

A pipeline is composed from one or more step sets (node, cluster, host,
haproxy).  ``build()`` returns the step list fixed at construction;
``execute()`` runs it through the StepRunner with a fresh
ExecutionContext, so every run re-resolves versions and re-detects host
facts.  Order is a straight chain: a step reads only context keys that
earlier steps in this list wrote.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from nodestrap.adapters.host import Host
from nodestrap.core.context import ExecutionContext
from nodestrap.core.engine.runner import Sink, StepRunner
from nodestrap.core.models.config import NodestrapConfig
from nodestrap.core.models.step import PipelineResult, Step
from nodestrap.core.mutation.config_mutator import ConfigMutator
from nodestrap.core.mutation.stamps import AppliedStamps
from nodestrap.core.pipeline.prompter import Prompter
from nodestrap.core.versions.resolver import VersionResolver

logger = logging.getLogger(__name__)


@dataclass
class PipelineEnv:
    """Collaborators every step builder closes over.

    Steps read ``env.context`` at call time, so swapping in a fresh
    context before a run is enough to reset per-run state.
    """

    host: Host
    config: NodestrapConfig
    mutator: ConfigMutator
    resolver: VersionResolver
    stamps: AppliedStamps
    prompter: Prompter | None = None
    context: ExecutionContext = field(default_factory=ExecutionContext)


StepSet = Callable[[PipelineEnv], list[Step]]


class ProvisioningPipeline:
    def __init__(
        self,
        name: str,
        step_sets: list[StepSet],
        *,
        host: Host,
        config: NodestrapConfig,
        prompter: Prompter | None = None,
        mutator: ConfigMutator | None = None,
        resolver: VersionResolver | None = None,
    ):
        self.name = name
        self.env = PipelineEnv(
            host=host,
            config=config,
            mutator=mutator or ConfigMutator(),
            resolver=resolver or VersionResolver(host.fetcher),
            stamps=AppliedStamps(host.path(config.state_dir)),
            prompter=prompter,
        )
        steps: list[Step] = []
        for step_set in step_sets:
            steps.extend(step_set(self.env))
        names = [s.name for s in steps]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Pipeline {name!r} has duplicate step names: {', '.join(duplicates)}")
        self._steps = steps

    @property
    def context(self) -> ExecutionContext:
        return self.env.context

    def build(self) -> list[Step]:
        return list(self._steps)

    def execute(self, sink: Sink | None = None) -> PipelineResult:
        self.env.context = ExecutionContext()
        logger.info("Running pipeline '%s' (%d steps) on root %s", self.name, len(self._steps), self.env.host.root)
        return StepRunner(sink).run(self._steps, pipeline=self.name)
