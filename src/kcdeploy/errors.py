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
Error taxonomy for provisioning runs.

Every error carries a ``fatal`` flag. Fatal errors abort the run with a
non-zero exit code; non-fatal errors are reported as warnings and the run
is still considered successful.
"""
from typing import List, Optional


class KcDeployError(Exception):
    """Base class for all kcdeploy errors."""

    fatal = True


class MissingConfigError(KcDeployError):
    """A required configuration key is absent or empty."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Missing required configuration key: {key}")


class InvalidConfigError(KcDeployError):
    """A configuration value is present but unusable."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid value for {key}: {reason}")


class TopologyError(KcDeployError):
    """The service topology is inconsistent (cycles, unknown services, roles)."""


class RuntimeCommandError(KcDeployError):
    """A container runtime command exited with a non-zero status."""

    def __init__(self, command: List[str], returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(
            f"Command '{' '.join(command)}' failed with exit code {returncode}{detail}"
        )


class PrimitiveCreationError(KcDeployError):
    """A network or volume could not be created."""

    def __init__(self, kind: str, name: str, detail: str = ""):
        self.kind = kind
        self.name = name
        message = f"Failed to create {kind} '{name}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ServiceStartError(KcDeployError):
    """A service container could not be created, started or removed."""

    def __init__(self, name: str, detail: str = ""):
        self.name = name
        message = f"Failed to bring up service '{name}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ReadinessTimeoutError(KcDeployError):
    """A readiness predicate never became true within its attempt budget."""

    fatal = False

    def __init__(self, target: str, attempts: int, interval: float):
        self.target = target
        self.attempts = attempts
        self.interval = interval
        super().__init__(
            f"{target} did not become ready after {attempts} attempts "
            f"({attempts * interval:g}s)"
        )


class DependentServiceReadinessTimeout(ReadinessTimeoutError):
    """A dependent (backing) service never became ready."""

    fatal = True


class AdminApiError(KcDeployError):
    """The Keycloak admin API returned an unexpected response."""

    fatal = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class PrimaryServiceAdminAuthError(AdminApiError):
    """The admin password grant was rejected or could not be performed."""


class PostDeployVerificationMismatch(KcDeployError):
    """The discovery document did not advertise the expected issuer."""

    fatal = False

    def __init__(self, expected: str, actual: Optional[str]):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Issuer mismatch: expected '{expected}', got '{actual}'")
