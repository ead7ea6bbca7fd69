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
Orchestration of one provisioning run: primitives, dependent services, the
primary service, readiness gates and post-start configuration.
"""
import logging
import time
from typing import Callable, Dict, Optional

from ..errors import (
    DependentServiceReadinessTimeout, KcDeployError, ReadinessTimeoutError,
)
from ..MODELS.deploy_config import DeployConfig
from ..MODELS.orchestration_config import Topology
from ..MODELS.run_report import DeployReport, RunState, ServiceAction
from ..MODELS.service_definition import ServiceDefinition
from ..RUNNERS.container_runtime import DockerRuntime
from ..RUNNERS.dependency_resolver import DependencyResolver
from .admin_client import KeycloakAdminClient
from .primitive_manager import PrimitiveManager
from .readiness import PredicateFactory, wait_for_readiness
from .realm_configurator import (
    configure_primary_service, desired_realm_attributes, verify_deployment,
)
from .service_manager import ServiceManager

logger = logging.getLogger(__name__)


class ServiceOrchestrator:
    """
    Drives the topology to its desired state in dependency order.
    """
    def __init__(self, config: DeployConfig, topology: Topology,
                 runtime: Optional[DockerRuntime] = None,
                 admin_client: Optional[KeycloakAdminClient] = None,
                 predicate_factory: Optional[PredicateFactory] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.time):
        """
        Initializes the orchestrator.

        :param config: Deployment settings.
        :param topology: Services, networks and volumes to provision.
        :param runtime: Container runtime; defaults to the docker CLI.
        :param admin_client: Admin API client for the primary service.
        :param predicate_factory: Builds readiness predicates from probes.
        :param sleep: Sleep function used between readiness polls.
        :param clock: Wall-clock source for scoping log probes to the latest start.
        """
        self.config = config
        self.topology = topology
        self.runtime = runtime or DockerRuntime(config.docker_command)
        self.admin_client = admin_client or KeycloakAdminClient(config.admin_url)
        self.predicates = predicate_factory or PredicateFactory(self.runtime, session=self.admin_client.session)
        self.sleep = sleep
        self.clock = clock

        self.resolver = DependencyResolver()
        self.primitives = PrimitiveManager(self.runtime)
        self.services = ServiceManager(self.runtime)
        self.report = DeployReport()

    def _enter(self, state: RunState) -> None:
        logger.debug("State -> %s", state.value)
        self.report.states.append(state)

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.report.warnings.append(message)

    def up(self, configure: bool = True, verify: bool = True) -> DeployReport:
        """
        Runs the full provisioning sequence.

        :param configure: Apply realm attributes through the admin API.
        :param verify: Check the discovery document afterwards.
        :return: The run report, ending in DONE.
        :raises KcDeployError: On any fatal failure; the report then ends in ABORTED.
        """
        self.report = DeployReport()
        try:
            self._enter(RunState.VALIDATING)
            order = self.resolver.resolve_order(self.topology)
            logger.info("Provisioning order: %s", ", ".join(order))

            self._enter(RunState.PROVISIONING_PRIMITIVES)
            self._provision_primitives()

            self._enter(RunState.STARTING_DEPENDENT_SERVICES)
            primary = self.topology.primary
            for name in order:
                svc = self.topology.services[name]
                if svc.is_primary:
                    continue
                started_at = self.clock()
                action = self.services.ensure_dependent_service(svc)
                self.report.actions[name] = action
                since = None if action == ServiceAction.ALREADY_RUNNING else started_at
                self._await(svc, DependentServiceReadinessTimeout, since=since)

            self._enter(RunState.REDEPLOYING_PRIMARY_SERVICE)
            primary_started_at = self.clock()
            self.report.actions[primary.name] = self.services.redeploy_primary_service(primary)
        except KcDeployError as e:
            self.report.abort_reason = str(e)
            self._enter(RunState.ABORTED)
            logger.error("Provisioning aborted: %s", e)
            raise

        self._enter(RunState.AWAITING_READINESS)
        try:
            self._await(primary, ReadinessTimeoutError, since=primary_started_at)
        except ReadinessTimeoutError as e:
            self._warn(f"{e}; continuing with default configuration")

        self._enter(RunState.CONFIGURING_PRIMARY_SERVICE)
        if configure:
            result = configure_primary_service(
                self.admin_client, self.config.admin_username, self.config.admin_password,
                self.config.realm, desired_realm_attributes(self.config),
            )
            self.report.configured = result.ok
            if not result.ok:
                self.report.warnings.append(f"Realm configuration skipped: {result.error}")

        self._enter(RunState.VERIFYING)
        if verify:
            result = verify_deployment(self.admin_client, self.config.realm, self.config.expected_issuer())
            self.report.verified = result.ok
            if not result.ok:
                self.report.warnings.append(f"Verification failed: {result.error}")

        self._enter(RunState.DONE)
        return self.report

    def _provision_primitives(self) -> None:
        for network in self.topology.networks:
            if self.primitives.ensure_network(network):
                self.report.created_primitives.append(f"network/{network}")
        for volume in self.topology.volumes:
            if self.primitives.ensure_volume(volume):
                self.report.created_primitives.append(f"volume/{volume}")

    def _await(self, svc: ServiceDefinition, error_class,
               since: Optional[float] = None) -> Optional[int]:
        """
        Blocks until the service's readiness probe passes.

        :param svc: Service to wait for.
        :param error_class: Error raised on timeout.
        :param since: When this run (re)started the container; None if it was left running.
        :return: Attempts taken, or None if the service has no probe.
        """
        probe = svc.readiness
        if probe is None:
            logger.debug("%s has no readiness probe", svc.name)
            return None
        predicate = self.predicates.build(probe, svc.container_name, since=since)
        return wait_for_readiness(
            predicate,
            poll_interval=probe.interval or self.config.readiness_interval,
            max_attempts=probe.attempts or self.config.readiness_attempts,
            description=svc.name,
            error_class=error_class,
            sleep=self.sleep,
        )

    def ps(self) -> Dict[str, str]:
        """
        Returns the state of every service container.

        :return: Service names and their states.
        """
        return {name: self.services.status(svc).value for name, svc in self.topology.services.items()}

    def verify(self) -> bool:
        result = verify_deployment(self.admin_client, self.config.realm, self.config.expected_issuer())
        return result.ok

    def routing_labels(self) -> Dict[str, str]:
        return dict(self.topology.primary.labels)
