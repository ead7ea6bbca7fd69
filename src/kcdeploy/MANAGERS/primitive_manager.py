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
Idempotent provisioning of networks and volumes.
"""
import logging
from enum import Enum

from ..errors import PrimitiveCreationError, RuntimeCommandError
from ..RUNNERS.container_runtime import DockerRuntime

logger = logging.getLogger(__name__)


class PrimitiveKind(str, Enum):
    """Kinds of infrastructure primitive the orchestrator provisions."""

    NETWORK = "network"
    VOLUME = "volume"


class PrimitiveManager:
    """
    Ensures networks and volumes exist. Never deletes anything.
    """
    def __init__(self, runtime: DockerRuntime):
        """
        :param runtime: The container runtime.
        """
        self.runtime = runtime

    def ensure(self, kind: PrimitiveKind, name: str) -> bool:
        """
        Creates the primitive if no resource with exactly this name exists.

        :param kind: Network or volume.
        :param name: Exact resource name.
        :return: True if it was created by this call, False if it already existed.
        :raises PrimitiveCreationError: If it is absent and cannot be created.
        """
        kind = PrimitiveKind(kind)
        try:
            if self.runtime.primitive_exists(kind.value, name):
                logger.debug("%s '%s' already exists", kind.value.capitalize(), name)
                return False
        except RuntimeCommandError as e:
            raise PrimitiveCreationError(kind.value, name, str(e)) from e

        logger.info("Creating %s %s...", kind.value, name)
        try:
            self.runtime.create_primitive(kind.value, name)
        except RuntimeCommandError as e:
            # Another creator may have won the race; accept what is there.
            try:
                exists = self.runtime.primitive_exists(kind.value, name)
            except RuntimeCommandError:
                exists = False
            if exists:
                logger.info("%s '%s' appeared concurrently, reusing it", kind.value.capitalize(), name)
                return False
            raise PrimitiveCreationError(kind.value, name, e.stderr or str(e)) from e
        return True

    def ensure_network(self, name: str) -> bool:
        return self.ensure(PrimitiveKind.NETWORK, name)

    def ensure_volume(self, name: str) -> bool:
        return self.ensure(PrimitiveKind.VOLUME, name)
