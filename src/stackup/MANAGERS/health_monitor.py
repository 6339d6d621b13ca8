# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Readiness monitoring after services are started: a bounded polling loop over the
runtime's reported container and health states, walked in dependency order.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    wait_fixed,
)

from ..exceptions import RuntimeCommandError
from ..MODELS.deployment_attempt import ServiceState
from ..MODELS.deployment_config import ReadinessSettings
from ..MODELS.orchestration_config import OrchestrationConfig
from ..RUNNERS.compose_runner import ComposeRunner
from ..RUNNERS.dependency_resolver import DependencyResolver

logger = logging.getLogger(__name__)


@dataclass
class ReadinessResult:
    """Outcome of waiting for the stack to become ready."""

    states: List[ServiceState] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    # Dependents of failed services that could not start because of them
    blocked: List[str] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failed


class HealthMonitor:
    """
    Waits for every service to become ready within the grace period.

    Services are awaited one by one in topological order, so a dependency is
    always judged before the services that need it. The wait for a service ends
    when it is ready, when it has failed, or when the shared deadline passes.
    """

    def __init__(
        self,
        runner: ComposeRunner,
        topology: OrchestrationConfig,
        settings: ReadinessSettings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initializes the health monitor.

        :param runner: Compose runner used to read service states.
        :param topology: Parsed services and their dependencies.
        :param settings: Grace period and poll interval.
        :param clock: Monotonic clock, in seconds.
        :param sleep: Sleep function used between polls.
        """
        self.runner = runner
        self.topology = topology
        self.settings = settings
        self.clock = clock
        self.sleep = sleep
        self.resolver = DependencyResolver()
        self._one_shot: Set[str] = self.resolver.completion_targets(topology)
        self._snapshot: Dict[str, ServiceState] = {}

    def refresh(self) -> Dict[str, ServiceState]:
        """
        Reads the current state of every service from the runtime.
        """
        self._snapshot = {state.service: state for state in self.runner.ps()}
        return self._snapshot

    def is_ready(self, state: ServiceState) -> bool:
        """
        A service that declares a health check is ready only once the runtime
        reports it healthy; an empty health value means none was reported yet.
        """
        one_shot = state.service in self._one_shot
        if not state.is_ready(one_shot):
            return False
        service = self.topology.services.get(state.service)
        if service is not None and service.has_health_check and not state.is_completed():
            return state.health == "healthy"
        return True

    def is_settled(self, state: Optional[ServiceState]) -> bool:
        if state is None:
            return False
        return self.is_ready(state) or state.is_failed(state.service in self._one_shot)

    def wait_until_ready(self) -> ReadinessResult:
        """
        Polls until every service is ready or failed, or the grace period ends,
        then evaluates the final state of the whole stack.

        :return: The readiness result; callers decide whether it is fatal.
        """
        started = self.clock()
        deadline = started + self.settings.grace_period
        order = self.resolver.resolve_order(self.topology)
        logger.info("Waiting up to %.0fs for services to become healthy: %s",
                    self.settings.grace_period, ", ".join(order))

        for name in order:
            state = self._wait_for(name, deadline)
            if state is None:
                continue
            if state.is_failed(name in self._one_shot):
                logger.error("Service %s failed: %s", name, state.display_status)
                break
            if self.is_ready(state):
                logger.info("Service %s is ready (%s).", name, state.display_status)
            if self.clock() >= deadline:
                break

        result = self.evaluate(self.refresh())
        result.elapsed = self.clock() - started
        return result

    def _wait_for(self, name: str, deadline: float) -> Optional[ServiceState]:
        """
        Polls a single service until it settles or the deadline passes.
        """
        def past_deadline(retry_state: RetryCallState) -> bool:
            return self.clock() >= deadline

        def log_pending(retry_state: RetryCallState) -> None:
            state = self._snapshot.get(name)
            logger.debug("Still waiting for %s (%s)", name,
                         state.display_status if state else "not created")

        retrying = Retrying(
            stop=past_deadline,
            wait=wait_fixed(self.settings.poll_interval),
            retry=(retry_if_result(lambda state: not self.is_settled(state))
                   | retry_if_exception_type(RuntimeCommandError)),
            before_sleep=log_pending,
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            sleep=self.sleep,
        )
        return retrying(lambda: self.refresh().get(name))

    def evaluate(self, snapshot: Dict[str, ServiceState]) -> ReadinessResult:
        """
        Classifies every service of the topology.

        Unhealthy, exited, dead, restarting and never-created services fail the
        stack; services still starting are pending.
        """
        result = ReadinessResult(states=[snapshot[n] for n in self.topology.services if n in snapshot])
        for name in self.topology.services:
            state = snapshot.get(name)
            one_shot = name in self._one_shot
            if state is None:
                result.failed.append(name)
            elif state.is_failed(one_shot) or state.state == "restarting":
                result.failed.append(name)
            elif not self.is_ready(state):
                result.pending.append(name)

        dependents = self.resolver.dependents(self.topology)
        for name in result.failed:
            for dependent in dependents.get(name, []):
                if dependent not in result.failed and dependent not in result.blocked:
                    result.blocked.append(dependent)
        return result

    def describe_failures(self, result: ReadinessResult) -> List[str]:
        """
        Human readable reasons for each failed service.
        """
        snapshot = {state.service: state for state in result.states}
        reasons = []
        for name in result.failed:
            state = snapshot.get(name)
            reasons.append(f"{name}: {state.display_status if state else 'not created'}")
        return reasons
