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
Readiness gating: fixed-interval polling of injectable predicates, plus
factories that turn a ReadinessProbe into such a predicate.
"""
import logging
import socket
import time
from typing import Callable, List, Optional, Type

import requests
from tenacity import RetryError, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from ..errors import ReadinessTimeoutError, RuntimeCommandError
from ..MODELS.service_definition import ReadinessProbe
from ..RUNNERS.container_runtime import DockerRuntime

logger = logging.getLogger(__name__)

Predicate = Callable[[], bool]


def wait_for_readiness(predicate: Predicate,
                       poll_interval: float = 2.0,
                       max_attempts: int = 60,
                       description: str = "service",
                       error_class: Type[ReadinessTimeoutError] = ReadinessTimeoutError,
                       sleep: Callable[[float], None] = time.sleep) -> int:
    """
    Polls a predicate at a fixed interval until it returns True.

    Returns as soon as the predicate is first true; never sleeps after success.

    :param predicate: Zero-argument callable returning a bool.
    :param poll_interval: Seconds between attempts.
    :param max_attempts: Upper bound on predicate evaluations.
    :param description: Name used in log lines and errors.
    :param error_class: Error raised on timeout.
    :param sleep: Sleep function, replaceable in tests.
    :return: Number of attempts it took.
    :raises ReadinessTimeoutError: If every attempt returned False.
    """
    def _log_wait(retry_state):
        logger.info("Waiting for %s... (%d/%d)", description, retry_state.attempt_number, max_attempts)

    retryer = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(poll_interval),
        retry=retry_if_result(lambda ready: not ready),
        before_sleep=_log_wait,
        sleep=sleep,
    )
    try:
        retryer(predicate)
    except RetryError as e:
        raise error_class(description, max_attempts, poll_interval) from e

    attempts = retryer.statistics.get("attempt_number", 1)
    logger.info("%s is ready (attempt %d)", description, attempts)
    return attempts


def log_contains(runtime: DockerRuntime, container: str, token: str,
                 since: Optional[float] = None) -> Predicate:
    """
    Ready when the container's log output contains ``token``.

    With ``since`` set, only lines written at or after that Unix time count, so a
    restarted container is not judged by output from its previous run. The whole
    log is searched; a long-running container's start line may be far back.
    """
    def predicate() -> bool:
        try:
            return token in runtime.container_logs(container, since=since)
        except RuntimeCommandError as e:
            logger.debug("Log probe for %s failed: %s", container, e)
            return False
    return predicate


def exec_succeeds(runtime: DockerRuntime, container: str, command: List[str]) -> Predicate:
    """Ready when ``command`` exits 0 inside the container."""
    def predicate() -> bool:
        try:
            return runtime.exec_in_container(container, command)
        except RuntimeCommandError as e:
            logger.debug("Exec probe for %s failed: %s", container, e)
            return False
    return predicate


def http_ok(url: str, session: Optional[requests.Session] = None, timeout: float = 5.0) -> Predicate:
    """Ready when GET ``url`` answers with a 2xx status."""
    http = session or requests.Session()

    def predicate() -> bool:
        try:
            response = http.get(url, timeout=timeout)
        except requests.RequestException as e:
            logger.debug("HTTP probe %s failed: %s", url, e)
            return False
        return 200 <= response.status_code < 300
    return predicate


def tcp_open(host: str, port: int, timeout: float = 2.0) -> Predicate:
    """Ready when a TCP connection to ``host:port`` succeeds."""
    def predicate() -> bool:
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            return False
    return predicate


class PredicateFactory:
    """
    Builds predicates from ReadinessProbe definitions.
    """
    def __init__(self, runtime: DockerRuntime, session: Optional[requests.Session] = None):
        self.runtime = runtime
        self.session = session

    def build(self, probe: ReadinessProbe, container: str,
              since: Optional[float] = None) -> Predicate:
        """
        Args:
            probe (ReadinessProbe): The probe definition.
            container (str): Container the log and exec probes target.
            since (Optional[float]): Unix time the container was last started by
                this run; log probes ignore earlier output. None when it was
                already running.
        """
        if probe.kind == "log":
            return log_contains(self.runtime, container, probe.token, since=since)
        if probe.kind == "exec":
            return exec_succeeds(self.runtime, container, probe.command)
        if probe.kind == "http":
            return http_ok(probe.url, session=self.session)
        return tcp_open(probe.host, probe.port)
