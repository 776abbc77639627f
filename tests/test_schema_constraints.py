"""Tests for constraints enforced by the database itself.

These write rows directly, bypassing the services, to check that the schema
rejects what the validation step would have rejected.
"""

import pytest
from sqlalchemy import exc as sa_exc
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from cluster_registry.core.exceptions import ConflictError, IntegrityError, ValidationError
from cluster_registry.db.base import unit_of_work
from cluster_registry.models.models import (
    CapabilityKind,
    Cluster,
    DatacenterConfiguration,
    Environment,
    MachineConfig,
    WorkerNodeGroup,
)


def _machine_config(**overrides) -> MachineConfig:
    values = {"name": "m", "disk_gib": 10, "memory_mib": 1024, "num_cpus": 1, "machine_role": "worker"}
    values.update(overrides)
    return MachineConfig(**values)


def test_machine_role_check_constraint(db_session: Session):
    db_session.add(_machine_config(machine_role="gpu"))
    with pytest.raises(sa_exc.IntegrityError):
        db_session.commit()
    db_session.rollback()


@pytest.mark.parametrize("field", ["disk_gib", "memory_mib", "num_cpus"])
def test_machine_size_check_constraints(db_session: Session, field):
    with pytest.raises(ValidationError):
        with unit_of_work(db_session):
            db_session.add(_machine_config(**{field: 0}))
    assert db_session.query(MachineConfig).count() == 0


def test_cluster_type_check_constraint(db_session: Session, cluster_spec):
    with pytest.raises(ValidationError):
        with unit_of_work(db_session):
            db_session.add(Cluster(**{**cluster_spec, "cluster_type": "Edge"}))


def test_environment_name_check_constraint(db_session: Session):
    with pytest.raises(ValidationError):
        with unit_of_work(db_session):
            db_session.add(Environment(name="STAGING"))


def test_thumbprint_check_constraint(db_session: Session):
    with pytest.raises(ValidationError):
        with unit_of_work(db_session):
            db_session.add(DatacenterConfiguration(
                name="dc", datacenter="dc", network="net", server="vc", insecure=False, thumbprint=None,
            ))


def test_worker_count_check_constraint(db_session: Session, cluster, worker_config):
    with pytest.raises(ValidationError):
        with unit_of_work(db_session):
            db_session.add(WorkerNodeGroup(cluster_id=cluster.id, name="bad", count=-1, machine_config_id=worker_config.id))


def test_live_environment_name_unique_index(db_session: Session):
    with unit_of_work(db_session):
        db_session.add(Environment(name="PROD"))

    with pytest.raises(ConflictError):
        with unit_of_work(db_session):
            db_session.add(Environment(name="PROD"))


def test_foreign_keys_enforced(db_session: Session, cluster_spec):
    with pytest.raises(IntegrityError):
        with unit_of_work(db_session):
            db_session.add(Cluster(**{**cluster_spec, "datacenter_config_id": 9999}))
    assert db_session.query(Cluster).count() == 0


def test_schema_tables_and_keys(db_session: Session):
    inspector = inspect(db_session.get_bind())

    assert set(inspector.get_table_names()) == {
        "datacenter_configurations",
        "cluster_networks",
        "machine_configs",
        "clusters",
        "worker_node_groups",
        "argocd_applications",
        "tags",
        "cluster_tags",
        "application_tags",
        "environments",
    }
    assert inspector.get_pk_constraint("cluster_tags")["constrained_columns"] == ["cluster_id", "tag_id"]
    assert inspector.get_pk_constraint("application_tags")["constrained_columns"] == ["application_id", "tag_id"]

    cluster_fks = {(fk["constrained_columns"][0], fk["referred_table"]) for fk in inspector.get_foreign_keys("clusters")}
    assert cluster_fks == {
        ("datacenter_config_id", "datacenter_configurations"),
        ("cluster_network_id", "cluster_networks"),
        ("control_plane_config_id", "machine_configs"),
        ("etcd_config_id", "machine_configs"),
        ("environment_id", "environments"),
    }

    for table in ("clusters", "tags", "environments"):
        columns = {column["name"] for column in inspector.get_columns(table)}
        assert {"id", "created_at", "updated_at", "deleted_at"} <= columns
    assert "id" not in {column["name"] for column in inspector.get_columns("cluster_tags")}


def test_capability_kinds_are_markers_only():
    assert {kind.value for kind in CapabilityKind} == {"HarborRegistry", "MinIO", "ArgoCD", "ApplicationTier"}
