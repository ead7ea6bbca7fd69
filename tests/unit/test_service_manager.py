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
Unit tests for container lifecycle management.
"""
import pytest

from kcdeploy.errors import ServiceStartError
from kcdeploy.MODELS.run_report import ContainerState, ServiceAction
from kcdeploy.MANAGERS.service_manager import ServiceManager
from kcdeploy.PARSERS.topology_parser import TopologyBuilder


@pytest.fixture
def manager(runtime):
    return ServiceManager(runtime)


@pytest.fixture
def topology(config):
    return TopologyBuilder(config).build()


class TestDependentService:
    def test_absent_is_created(self, manager, fake_docker, topology):
        assert manager.ensure_dependent_service(topology.services["postgres"]) == ServiceAction.CREATED
        assert fake_docker.containers["keycloak-postgres"]["state"] == "running"

    def test_running_is_left_alone(self, manager, fake_docker, topology):
        pg = topology.services["postgres"]
        manager.ensure_dependent_service(pg)
        generation = fake_docker.containers["keycloak-postgres"]["generation"]
        assert manager.ensure_dependent_service(pg) == ServiceAction.ALREADY_RUNNING
        assert fake_docker.containers["keycloak-postgres"]["generation"] == generation
        assert len(fake_docker.commands("create")) == 1

    def test_stopped_is_started_not_recreated(self, manager, fake_docker, topology):
        pg = topology.services["postgres"]
        manager.ensure_dependent_service(pg)
        fake_docker.stop("keycloak-postgres")
        assert manager.ensure_dependent_service(pg) == ServiceAction.STARTED
        assert fake_docker.commands("start")[-1] == ["start", "keycloak-postgres"]
        assert len(fake_docker.commands("create")) == 1
        assert not fake_docker.commands("rm")

    def test_start_failure(self, manager, fake_docker, topology):
        fake_docker.fail("create", stderr="image not found")
        with pytest.raises(ServiceStartError, match="image not found") as exc:
            manager.ensure_dependent_service(topology.services["postgres"])
        assert exc.value.name == "keycloak-postgres"

    def test_failed_start_leaves_no_container(self, manager, fake_docker, topology):
        fake_docker.fail("start", stderr="port is already allocated")
        with pytest.raises(ServiceStartError, match="port is already allocated"):
            manager.ensure_dependent_service(topology.services["postgres"])
        assert "keycloak-postgres" not in fake_docker.containers
        assert manager.status(topology.services["postgres"]) == ContainerState.ABSENT


class TestPrimaryService:
    def test_first_deploy_creates(self, manager, topology):
        assert manager.redeploy_primary_service(topology.primary) == ServiceAction.CREATED

    def test_redeploy_replaces_instance(self, manager, fake_docker, topology):
        manager.redeploy_primary_service(topology.primary)
        first = fake_docker.containers["keycloak"]["generation"]
        assert manager.redeploy_primary_service(topology.primary) == ServiceAction.REDEPLOYED
        assert fake_docker.containers["keycloak"]["generation"] != first
        assert list(fake_docker.containers) == ["keycloak"]
        assert fake_docker.commands("rm") == [["rm", "-f", "keycloak"]]

    def test_stopped_primary_is_replaced(self, manager, fake_docker, topology):
        manager.redeploy_primary_service(topology.primary)
        fake_docker.stop("keycloak")
        assert manager.redeploy_primary_service(topology.primary) == ServiceAction.REDEPLOYED
        assert manager.status(topology.primary) == ContainerState.RUNNING

    def test_removal_failure(self, manager, fake_docker, topology):
        manager.redeploy_primary_service(topology.primary)
        fake_docker.fail("rm", stderr="device busy")
        with pytest.raises(ServiceStartError, match="device busy"):
            manager.redeploy_primary_service(topology.primary)
