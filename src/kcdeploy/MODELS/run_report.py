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
Run states and the report produced by one provisioning run.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class RunState(str, Enum):
    """States of the per-run orchestration state machine."""

    VALIDATING = "validating"
    PROVISIONING_PRIMITIVES = "provisioning-primitives"
    STARTING_DEPENDENT_SERVICES = "starting-dependent-services"
    REDEPLOYING_PRIMARY_SERVICE = "redeploying-primary-service"
    AWAITING_READINESS = "awaiting-readiness"
    CONFIGURING_PRIMARY_SERVICE = "configuring-primary-service"
    VERIFYING = "verifying"
    DONE = "done"
    ABORTED = "aborted"


class ContainerState(str, Enum):
    """Observed state of a named container."""

    ABSENT = "absent"
    STOPPED = "stopped"
    RUNNING = "running"


class ServiceAction(str, Enum):
    """What the orchestrator did to a service during a run."""

    ALREADY_RUNNING = "already-running"
    STARTED = "started"
    CREATED = "created"
    REDEPLOYED = "redeployed"


@dataclass
class DeployReport:
    """Outcome of a provisioning run."""

    states: List[RunState] = field(default_factory=list)
    actions: Dict[str, ServiceAction] = field(default_factory=dict)
    created_primitives: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    configured: bool = False
    verified: bool = False
    abort_reason: Optional[str] = None

    @property
    def state(self) -> Optional[RunState]:
        return self.states[-1] if self.states else None

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.DONE
