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
Lifecycle management for service containers.
"""
import logging

from ..errors import RuntimeCommandError, ServiceStartError
from ..MODELS.run_report import ContainerState, ServiceAction
from ..MODELS.service_definition import ServiceDefinition
from ..RUNNERS.container_runtime import DockerRuntime

logger = logging.getLogger(__name__)


class ServiceManager:
    """
    Brings dependent services up without disturbing them and redeploys the
    primary service from scratch.
    """
    def __init__(self, runtime: DockerRuntime):
        """
        :param runtime: The container runtime.
        """
        self.runtime = runtime

    def status(self, svc: ServiceDefinition) -> ContainerState:
        return self.runtime.container_state(svc.container_name)

    def ensure_dependent_service(self, svc: ServiceDefinition) -> ServiceAction:
        """
        Running: leave it alone. Stopped: start it. Absent: create it.

        An existing container is never recreated, so its data and
        configuration survive across runs.

        :param svc: The dependent service definition.
        :return: The action taken.
        :raises ServiceStartError: If the runtime rejects the start or create.
        """
        name = svc.container_name
        try:
            state = self.runtime.container_state(name)
            if state == ContainerState.RUNNING:
                logger.info("%s '%s' is already running, skipping", svc.name, name)
                return ServiceAction.ALREADY_RUNNING
            if state == ContainerState.STOPPED:
                logger.info("%s '%s' exists but is stopped, starting", svc.name, name)
                self.runtime.start_container(name)
                return ServiceAction.STARTED
            logger.info("Creating %s '%s' from %s", svc.name, name, svc.image_name)
            self.runtime.run_container(svc)
            return ServiceAction.CREATED
        except RuntimeCommandError as e:
            raise ServiceStartError(name, e.stderr or str(e)) from e

    def redeploy_primary_service(self, svc: ServiceDefinition) -> ServiceAction:
        """
        Removes any container with the same name, then creates a fresh one.

        :param svc: The primary service definition.
        :return: REDEPLOYED if an instance was replaced, CREATED otherwise.
        :raises ServiceStartError: If removal or creation fails.
        """
        name = svc.container_name
        try:
            replaced = self.runtime.container_state(name) != ContainerState.ABSENT
            if replaced:
                logger.info("Removing existing %s container '%s'", svc.name, name)
                self.runtime.remove_container(name)
            logger.info("Starting %s '%s' from %s", svc.name, name, svc.image_name)
            self.runtime.run_container(svc)
        except RuntimeCommandError as e:
            raise ServiceStartError(name, e.stderr or str(e)) from e
        return ServiceAction.REDEPLOYED if replaced else ServiceAction.CREATED
