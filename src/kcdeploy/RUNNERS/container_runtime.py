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
Thin wrapper around the Docker CLI. Every resource is addressed by its exact name.
"""
import logging
import os
import shlex
import subprocess
from typing import Callable, Dict, List, Optional

from ..errors import RuntimeCommandError
from ..MODELS.run_report import ContainerState
from ..MODELS.service_definition import ServiceDefinition

logger = logging.getLogger(__name__)

PRIMITIVE_KINDS = ("network", "volume")

_RUNNING_STATES = {"running", "restarting", "paused"}


class DockerRuntime:
    """
    Executes docker commands and interprets their output.
    """
    def __init__(self, docker_command: str = "docker",
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        """
        Initializes the runtime.

        Args:
            docker_command (str): Command prefix, e.g. 'docker' or 'sudo docker'.
            runner (Callable): subprocess.run compatible callable.
        """
        self.base_command = shlex.split(docker_command)
        self._runner = runner

    def _command(self, args: List[str], env_keys: Optional[List[str]] = None) -> List[str]:
        base = list(self.base_command)
        # sudo drops the caller's environment unless told to keep specific keys.
        if env_keys and base and base[0] == "sudo":
            base.insert(1, f"--preserve-env={','.join(env_keys)}")
        return base + args

    def _run(self, args: List[str], env: Optional[Dict[str, str]] = None,
             check: bool = True) -> subprocess.CompletedProcess:
        """
        Runs one docker command.

        Args:
            args (List[str]): Arguments after the docker binary.
            env (Optional[Dict[str, str]]): Extra environment for the child process.
            check (bool): Raise on non-zero exit.

        Returns:
            subprocess.CompletedProcess: The finished process.
        """
        command = self._command(args, sorted(env) if env else None)
        logger.debug("Running: %s", " ".join(command))

        child_env = None
        if env:
            child_env = os.environ.copy()
            child_env.update(env)

        try:
            result = self._runner(command, capture_output=True, text=True, env=child_env)
        except OSError as e:
            raise RuntimeCommandError(command, 127, str(e)) from e

        if check and result.returncode != 0:
            raise RuntimeCommandError(command, result.returncode, result.stderr or "")
        return result

    # Primitives

    def list_primitives(self, kind: str) -> List[str]:
        """Names of all networks or volumes known to the daemon."""
        self._check_kind(kind)
        result = self._run([kind, "ls", "--format", "{{.Name}}"])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def primitive_exists(self, kind: str, name: str) -> bool:
        # Exact comparison; 'kc' must not match 'kc_data'.
        return name in self.list_primitives(kind)

    def create_primitive(self, kind: str, name: str) -> None:
        self._check_kind(kind)
        self._run([kind, "create", name])

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in PRIMITIVE_KINDS:
            raise ValueError(f"Unknown primitive kind '{kind}'")

    # Containers

    def container_state(self, name: str) -> ContainerState:
        """
        Looks up a container by exact name.

        Returns:
            ContainerState: ABSENT, STOPPED or RUNNING.
        """
        result = self._run([
            "ps", "-a",
            "--filter", f"name=^/{name}$",
            "--format", "{{.Names}}\t{{.State}}",
        ])
        for line in result.stdout.splitlines():
            found, _, state = line.strip().partition("\t")
            if found == name:
                return ContainerState.RUNNING if state.strip().lower() in _RUNNING_STATES else ContainerState.STOPPED
        return ContainerState.ABSENT

    def build_create_args(self, svc: ServiceDefinition) -> List[str]:
        """
        Builds the 'docker create' arguments for a service.

        Environment values are not placed on the command line; each variable is
        named with '-e KEY' and its value is inherited from the child environment.
        """
        args = ["create", "--name", svc.container_name, "--restart", svc.restart_policy]
        if svc.networks:
            args += ["--network", svc.networks[0]]
        for mount in svc.volumes:
            args += ["-v", mount.as_arg()]
        for port in svc.ports:
            args += ["-p", port.as_arg()]
        for key in svc.environment:
            args += ["-e", key]
        for key, value in svc.labels.items():
            args += ["--label", f"{key}={value}"]
        args.append(svc.image_name)
        args += svc.command
        return args

    def run_container(self, svc: ServiceDefinition) -> str:
        """
        Creates a container, attaches its extra networks, then starts it.

        If any step after the create fails, the container is removed again so
        the next run does not find a half-configured container.

        Returns:
            str: The new container id.
        """
        result = self._run(self.build_create_args(svc), env=svc.environment)
        try:
            for network in svc.networks[1:]:
                self._run(["network", "connect", network, svc.container_name])
            self.start_container(svc.container_name)
        except RuntimeCommandError:
            self._discard(svc.container_name)
            raise
        return result.stdout.strip()

    def _discard(self, name: str) -> None:
        try:
            self.remove_container(name)
        except RuntimeCommandError as e:
            logger.error("Could not remove incomplete container %s: %s", name, e)

    def start_container(self, name: str) -> None:
        self._run(["start", name])

    def remove_container(self, name: str) -> None:
        self._run(["rm", "-f", name])

    def container_logs(self, name: str, tail: Optional[int] = None,
                       since: Optional[float] = None) -> str:
        """
        Returns the container's log output.

        Args:
            name (str): Container name.
            tail (Optional[int]): Only the last N lines.
            since (Optional[float]): Only lines written at or after this Unix time.
        """
        args = ["logs"]
        if since is not None:
            args += ["--since", str(int(since))]
        if tail is not None:
            args += ["--tail", str(tail)]
        result = self._run(args + [name])
        # Containers write to both streams; docker logs preserves the split.
        return (result.stdout or "") + (result.stderr or "")

    def exec_in_container(self, name: str, command: List[str]) -> bool:
        """
        Runs a command inside a running container.

        Returns:
            bool: True if the command exited with status 0.
        """
        result = self._run(["exec", name] + list(command), check=False)
        return result.returncode == 0
