"""Pytest configuration and fixtures.

This module provides shared fixtures for testing, including:
- Test database setup (in-memory SQLite with foreign keys enforced)
- Factories for the configuration rows a cluster needs
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cluster_registry.db.base import Base, enable_sqlite_foreign_keys
from cluster_registry.services.cluster_service import ClusterService
from cluster_registry.services.configuration_service import ConfigurationService
from cluster_registry.services.environment_service import EnvironmentService
import cluster_registry.models.models  # noqa: F401


# Create in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)
enable_sqlite_foreign_keys(test_engine)

TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test.

    Creates tables, yields session, then drops tables for cleanup.
    """
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def datacenter_config(db_session):
    return ConfigurationService.create_datacenter_configuration(db_session, {
        "name": "vsphere-dc1",
        "datacenter": "Datacenter1",
        "network": "/Datacenter1/network/VM Network",
        "server": "vcenter.example.com",
        "insecure": False,
        "thumbprint": "AB:CD:EF:01:23:45",
    })


@pytest.fixture
def cluster_network(db_session):
    return ConfigurationService.create_cluster_network(db_session, {
        "cni_plugin": "cilium",
        "pods_cidr_blocks": ["192.168.0.0/16"],
        "services_cidr_blocks": ["10.96.0.0/12"],
    })


@pytest.fixture
def machine_config_factory(db_session):
    """Create machine configs with sensible defaults for a given role."""
    def create(machine_role: str, **overrides):
        data = {
            "name": f"{machine_role}-template",
            "disk_gib": 50,
            "memory_mib": 8192,
            "num_cpus": 4,
            "os_family": "ubuntu",
            "clone_mode": "linkedClone",
            "machine_role": machine_role,
        }
        data.update(overrides)
        return ConfigurationService.create_machine_config(db_session, data)
    return create


@pytest.fixture
def control_plane_config(machine_config_factory):
    return machine_config_factory("control-plane")


@pytest.fixture
def etcd_config(machine_config_factory):
    return machine_config_factory("etcd")


@pytest.fixture
def worker_config(machine_config_factory):
    return machine_config_factory("worker")


@pytest.fixture
def environment(db_session):
    return EnvironmentService.create_environment(db_session, {"name": "DEV"})


@pytest.fixture
def cluster_spec(datacenter_config, cluster_network, control_plane_config, etcd_config, environment):
    """Valid cluster fields referencing freshly created configuration rows."""
    return {
        "name": "mgmt-01",
        "namespace": "default",
        "eksa_version": "v0.18.0",
        "kubernetes_version": "1.28",
        "cluster_type": "Management",
        "datacenter_config_id": datacenter_config.id,
        "cluster_network_id": cluster_network.id,
        "control_plane_config_id": control_plane_config.id,
        "etcd_config_id": etcd_config.id,
        "environment_id": environment.id,
    }


@pytest.fixture
def cluster(db_session, cluster_spec, worker_config):
    return ClusterService.create_cluster(db_session, cluster_spec, [
        {"name": "md-0", "count": 3, "machine_config_id": worker_config.id},
    ])
