"""
Shared fixtures: an in-memory docker CLI and an in-memory Keycloak HTTP API.
"""
import re
import subprocess
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import pytest
import requests

from kcdeploy.MODELS.deploy_config import DeployConfig
from kcdeploy.PARSERS.topology_parser import TopologyBuilder
from kcdeploy.RUNNERS.container_runtime import DockerRuntime
from kcdeploy.MANAGERS.admin_client import KeycloakAdminClient
from kcdeploy.MANAGERS.readiness import PredicateFactory
from kcdeploy.MANAGERS.service_orchestrator import ServiceOrchestrator


class FakeDocker:
    """
    Stands in for subprocess.run and answers docker CLI invocations from memory.
    """

    def __init__(self):
        self.networks = set()
        self.volumes = set()
        self.volume_data: Dict[str, Dict[str, str]] = {}
        self.containers: Dict[str, dict] = {}
        self.logs: Dict[str, List[Tuple[float, str]]] = {}
        self.calls: List[List[str]] = []
        self.failures: Dict[tuple, tuple] = {}
        self.exec_ok = True
        self.run_count = 0
        self.now = 1000.0

    # helpers used by tests

    def fail(self, *prefix, returncode=1, stderr="boom"):
        self.failures[tuple(prefix)] = (returncode, stderr)

    def stop(self, name):
        self.containers[name]["state"] = "exited"

    def log(self, name, *lines):
        """Appends lines to a container's log, stamped with the current fake time."""
        self.logs.setdefault(name, []).extend((self.now, line) for line in lines)

    def commands(self, verb: str) -> List[List[str]]:
        return [c for c in self.calls if c and c[0] == verb]

    # subprocess.run protocol

    def __call__(self, command, capture_output=True, text=True, env=None):
        args = list(command[1:])
        self.calls.append(args)
        for prefix, (code, err) in self.failures.items():
            if tuple(args[:len(prefix)]) == prefix:
                return self._result(command, code, stderr=err)

        verb = args[0]
        if verb in ("network", "volume"):
            return self._primitive(command, verb, args[1:])
        handler = getattr(self, f"_{verb}")
        return handler(command, args[1:], env or {})

    @staticmethod
    def _result(command, returncode=0, stdout="", stderr=""):
        return subprocess.CompletedProcess(command, returncode, stdout, stderr)

    def _primitive(self, command, kind, args):
        store = self.networks if kind == "network" else self.volumes
        action = args[0]
        if action == "ls":
            return self._result(command, stdout="\n".join(sorted(store)) + "\n")
        if action == "create":
            name = args[-1]
            if name in store:
                return self._result(command, 1, stderr=f"{kind} with name {name} already exists")
            store.add(name)
            if kind == "volume":
                self.volume_data.setdefault(name, {})
            return self._result(command, stdout=name)
        if action == "connect":
            network, container = args[1], args[2]
            self.containers[container]["networks"].append(network)
            return self._result(command)
        raise AssertionError(f"unexpected {kind} command {args}")

    def _ps(self, command, args, env):
        pattern = args[args.index("--filter") + 1].split("=", 1)[1]
        lines = [f"{name}\t{c['state']}" for name, c in self.containers.items()
                 if re.search(pattern, "/" + name)]
        return self._result(command, stdout="\n".join(lines))

    def _create(self, command, args, env):
        name = args[args.index("--name") + 1]
        if name in self.containers:
            return self._result(command, 125, stderr=f'Conflict. The container name "/{name}" is already in use')
        environment, labels, volumes, ports = {}, {}, [], []
        network = None
        i = 0
        while i < len(args):
            flag = args[i]
            if flag == "-e":
                key = args[i + 1]
                environment[key] = env.get(key)
                i += 2
            elif flag == "--label":
                key, _, value = args[i + 1].partition("=")
                labels[key] = value
                i += 2
            elif flag == "-v":
                volumes.append(args[i + 1])
                i += 2
            elif flag == "-p":
                ports.append(args[i + 1])
                i += 2
            elif flag == "--network":
                network = args[i + 1]
                i += 2
            elif flag in ("--name", "--restart"):
                i += 2
            else:
                break
        image, cmd = args[i], args[i + 1:]
        for mount in volumes:
            source = mount.split(":")[0]
            self.volumes.add(source)
            self.volume_data.setdefault(source, {})
        self.run_count += 1
        self.containers[name] = {
            "state": "created", "image": image, "command": cmd, "env": environment,
            "labels": labels, "volumes": volumes, "ports": ports,
            "networks": [network] if network else [], "generation": self.run_count,
        }
        return self._result(command, stdout=f"id-{self.run_count}\n")

    def _start(self, command, args, env):
        name = args[0]
        if name not in self.containers:
            return self._result(command, 1, stderr=f"No such container: {name}")
        self.containers[name]["state"] = "running"
        return self._result(command, stdout=name)

    def _rm(self, command, args, env):
        name = args[-1]
        if name not in self.containers:
            return self._result(command, 1, stderr=f"No such container: {name}")
        del self.containers[name]
        return self._result(command, stdout=name)

    def _logs(self, command, args, env):
        entries = self.logs.get(args[-1], [])
        if "--since" in args:
            since = float(args[args.index("--since") + 1])
            entries = [(at, line) for at, line in entries if at >= since]
        if "--tail" in args:
            tail = int(args[args.index("--tail") + 1])
            entries = entries[-tail:] if tail else []
        return self._result(command, stdout="".join(line + "\n" for _, line in entries))

    def _exec(self, command, args, env):
        container = self.containers.get(args[0])
        ok = self.exec_ok and container is not None and container["state"] == "running"
        return self._result(command, 0 if ok else 1)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or ("" if payload is None else str(payload))

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeKeycloak:
    """
    Minimal Keycloak admin API behind a requests.Session-like interface.
    It only answers while its container is running in the paired FakeDocker.
    """

    def __init__(self, docker: Optional[FakeDocker], container: str, username: str, password: str,
                 issuer: Optional[str] = None):
        self.docker = docker
        self.container = container
        self.username = username
        self.password = password
        self.issuer = issuer
        self.realms: Dict[str, dict] = {"master": {"realm": "master", "attributes": {}}}
        self.clients: Dict[str, List[dict]] = {"master": []}
        self.users: Dict[str, List[dict]] = {"master": []}
        self.requests: List[tuple] = []
        self.tokens_issued = 0

    def _up(self) -> bool:
        if self.docker is None:
            return True
        c = self.docker.containers.get(self.container)
        return c is not None and c["state"] == "running"

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def request(self, method, url, headers=None, data=None, json=None, params=None, **kwargs):
        self.requests.append((method, url, headers or {}, data, json, params))
        if not self._up():
            raise requests.ConnectionError(f"connection refused: {url}")
        path = urlparse(url).path
        path = re.sub(r"^/keycloak", "", path)
        authed = (headers or {}).get("Authorization") == "Bearer token-abc"

        m = re.fullmatch(r"/realms/([^/]+)/protocol/openid-connect/token", path)
        if m and method == "POST":
            if data.get("username") == self.username and data.get("password") == self.password \
                    and data.get("client_id") == "admin-cli" and data.get("grant_type") == "password":
                self.tokens_issued += 1
                return FakeResponse(200, {"access_token": "token-abc", "expires_in": 60})
            return FakeResponse(401, {"error": "invalid_grant"})

        m = re.fullmatch(r"/realms/([^/]+)/\.well-known/openid-configuration", path)
        if m:
            realm = m.group(1)
            frontend = self.realms.get(realm, {}).get("attributes", {}).get("frontendUrl")
            issuer = self.issuer or (f"{frontend}/realms/{realm}" if frontend else f"http://localhost:8080/realms/{realm}")
            return FakeResponse(200, {"issuer": issuer})

        m = re.fullmatch(r"/realms/([^/]+)", path)
        if m and method == "GET":
            return FakeResponse(200 if m.group(1) in self.realms else 404, {"realm": m.group(1)})

        if path.startswith("/admin/") and not authed:
            return FakeResponse(401, {"error": "HTTP 401 Unauthorized"})

        m = re.fullmatch(r"/admin/realms/([^/]+)", path)
        if m:
            realm = self.realms.get(m.group(1))
            if realm is None:
                return FakeResponse(404, {"error": "Realm not found"})
            if method == "GET":
                return FakeResponse(200, realm)
            if method == "PUT":
                for key, value in json.items():
                    if isinstance(value, dict):
                        realm.setdefault(key, {}).update(value)
                    else:
                        realm[key] = value
                return FakeResponse(204)

        m = re.fullmatch(r"/admin/realms/([^/]+)/clients(?:/([^/]+))?", path)
        if m:
            clients = self.clients.setdefault(m.group(1), [])
            if method == "GET":
                return FakeResponse(200, [c for c in clients if c["clientId"] == params.get("clientId")])
            if method == "POST":
                clients.append(dict(json, id=f"uuid-{len(clients) + 1}"))
                return FakeResponse(201)
            if method == "PUT":
                for i, c in enumerate(clients):
                    if c["id"] == m.group(2):
                        clients[i] = dict(json, id=c["id"])
                        return FakeResponse(204)
                return FakeResponse(404, {"error": "Client not found"})

        m = re.fullmatch(r"/admin/realms/([^/]+)/users", path)
        if m:
            users = self.users.setdefault(m.group(1), [])
            if method == "GET":
                return FakeResponse(200, [u for u in users if u["username"] == params.get("username", "").lower()])
            if method == "POST":
                users.append(dict(json, username=json["username"].lower(), id=f"user-{len(users) + 1}"))
                return FakeResponse(201)

        return FakeResponse(404, {"error": f"no route for {method} {path}"})


@pytest.fixture
def env_values():
    return {
        "KEYCLOAK_ADMIN": "admin",
        "KEYCLOAK_ADMIN_PASSWORD": "s3cret-admin",
        "POSTGRES_DB": "keycloak",
        "POSTGRES_USER": "keycloak",
        "POSTGRES_PASSWORD": "s3cret-db",
        "PUBLIC_HOSTNAME": "auth.example.org",
        "LOCAL_HOSTNAME": "auth.lan",
        "KC_HTTP_RELATIVE_PATH": "/keycloak",
        "KEYCLOAK_IMAGE": "quay.io/keycloak/keycloak:26.0",
        "READINESS_INTERVAL": "1",
        "READINESS_ATTEMPTS": "5",
    }


@pytest.fixture
def config(env_values):
    return DeployConfig.from_mapping(env_values)


@pytest.fixture
def fake_docker():
    return FakeDocker()


@pytest.fixture
def runtime(fake_docker):
    return DockerRuntime("docker", runner=fake_docker)


@pytest.fixture
def fake_keycloak(fake_docker, config):
    return FakeKeycloak(fake_docker, config.keycloak_container, config.admin_username, config.admin_password)


@pytest.fixture
def admin_client(config, fake_keycloak):
    return KeycloakAdminClient(config.admin_url, session=fake_keycloak)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_orchestrator(config, runtime, admin_client, fake_docker, fake_keycloak, sleeps):
    def factory(cfg=None, topology=None):
        cfg = cfg or config
        return ServiceOrchestrator(
            cfg,
            topology or TopologyBuilder(cfg).build(),
            runtime=runtime,
            admin_client=admin_client,
            predicate_factory=PredicateFactory(runtime, session=fake_keycloak),
            sleep=sleeps.append,
            clock=lambda: fake_docker.now,
        )
    return factory
