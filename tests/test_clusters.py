"""Tests for the cluster aggregate and its worker node groups."""

import pytest
from sqlalchemy.orm import Session

from cluster_registry.core.exceptions import IntegrityError, NotFoundError, ValidationError
from cluster_registry.models.models import (
    ArgoCDApplication,
    Cluster,
    ClusterTag,
    DatacenterConfiguration,
    WorkerNodeGroup,
)
from cluster_registry.schemas.schemas import ClusterDetail
from cluster_registry.services.application_service import ApplicationService
from cluster_registry.services.cluster_service import ClusterService
from cluster_registry.services.configuration_service import ConfigurationService
from cluster_registry.services.environment_service import EnvironmentService
from cluster_registry.services.tag_service import TagService


def test_create_cluster_with_worker_node_groups(db_session: Session, cluster, worker_config):
    """Test that a cluster is created together with its worker node groups."""
    assert cluster.id is not None
    assert cluster.cluster_type == "Management"
    assert cluster.control_plane_config.machine_role == "control-plane"
    assert cluster.etcd_config.machine_role == "etcd"
    assert cluster.environment.name == "DEV"

    groups = ClusterService.list_worker_node_groups(db_session, cluster.id)
    assert len(groups) == 1
    assert groups[0].name == "md-0"
    assert groups[0].count == 3
    assert groups[0].machine_config_id == worker_config.id

    detail = ClusterDetail.model_validate(cluster)
    assert [group.name for group in detail.worker_node_groups] == ["md-0"]


def test_create_cluster_rejects_unknown_type(db_session: Session, cluster_spec):
    with pytest.raises(ValidationError):
        ClusterService.create_cluster(db_session, {**cluster_spec, "cluster_type": "Edge"})
    assert db_session.query(Cluster).count() == 0


def test_create_cluster_with_deleted_datacenter_writes_nothing(db_session: Session, cluster_spec, worker_config):
    """Test that a soft-deleted datacenter configuration cannot be referenced."""
    ConfigurationService.delete_datacenter_configuration(db_session, cluster_spec["datacenter_config_id"])

    with pytest.raises(IntegrityError):
        ClusterService.create_cluster(db_session, cluster_spec, [
            {"name": "md-0", "count": 2, "machine_config_id": worker_config.id},
        ])

    assert db_session.query(Cluster).count() == 0
    assert db_session.query(WorkerNodeGroup).count() == 0


@pytest.mark.parametrize("field", [
    "datacenter_config_id",
    "cluster_network_id",
    "control_plane_config_id",
    "etcd_config_id",
    "environment_id",
])
def test_create_cluster_with_missing_reference(db_session: Session, cluster_spec, field):
    with pytest.raises(IntegrityError) as exc_info:
        ClusterService.create_cluster(db_session, {**cluster_spec, field: 9999})
    assert field in exc_info.value.message
    assert db_session.query(Cluster).count() == 0


def test_create_cluster_rejects_non_worker_machine_config_for_group(db_session: Session, cluster_spec, etcd_config):
    """Test that the whole create fails when one worker group uses a non-worker config."""
    worker = ConfigurationService.create_machine_config(db_session, {
        "name": "worker", "disk_gib": 40, "memory_mib": 4096, "num_cpus": 2, "machine_role": "worker",
    })

    with pytest.raises(ValidationError):
        ClusterService.create_cluster(db_session, cluster_spec, [
            {"name": "md-0", "count": 2, "machine_config_id": worker.id},
            {"name": "md-1", "count": 2, "machine_config_id": etcd_config.id},
        ])

    assert db_session.query(Cluster).count() == 0
    assert db_session.query(WorkerNodeGroup).count() == 0


def test_create_cluster_rejects_swapped_control_plane_and_etcd(db_session: Session, cluster_spec):
    swapped = {
        **cluster_spec,
        "control_plane_config_id": cluster_spec["etcd_config_id"],
        "etcd_config_id": cluster_spec["control_plane_config_id"],
    }
    with pytest.raises(ValidationError):
        ClusterService.create_cluster(db_session, swapped)


def test_create_cluster_rejects_negative_worker_count(db_session: Session, cluster_spec, worker_config):
    with pytest.raises(ValidationError):
        ClusterService.create_cluster(db_session, cluster_spec, [
            {"name": "md-0", "count": -1, "machine_config_id": worker_config.id},
        ])


def test_configuration_rows_are_shared(db_session: Session, cluster, cluster_spec):
    second = ClusterService.create_cluster(db_session, {**cluster_spec, "name": "workload-01", "cluster_type": "Worker"})

    assert second.datacenter_config_id == cluster.datacenter_config_id
    assert len(ClusterService.list_clusters(db_session)) == 2
    assert [c.name for c in ClusterService.list_clusters(db_session, cluster_type="Worker")] == ["workload-01"]


def test_update_cluster_scalar_fields_and_references(db_session: Session, cluster, machine_config_factory):
    new_control_plane = machine_config_factory("control-plane", name="cp-large", num_cpus=8)
    prod = EnvironmentService.create_environment(db_session, {"name": "PROD"})

    updated = ClusterService.update_cluster(db_session, cluster.id, {
        "kubernetes_version": "1.29",
        "control_plane_config_id": new_control_plane.id,
        "environment_id": prod.id,
    })

    assert updated.kubernetes_version == "1.29"
    assert updated.control_plane_config_id == new_control_plane.id
    assert updated.environment.name == "PROD"
    assert updated.name == "mgmt-01"


def test_update_cluster_rejects_deleted_reference(db_session: Session, cluster, machine_config_factory):
    replacement = machine_config_factory("etcd", name="etcd-2")
    ConfigurationService.delete_machine_config(db_session, replacement.id)

    with pytest.raises(IntegrityError):
        ClusterService.update_cluster(db_session, cluster.id, {
            "kubernetes_version": "1.30",
            "etcd_config_id": replacement.id,
        })

    db_session.expire_all()
    unchanged = ClusterService.get_cluster(db_session, cluster.id)
    assert unchanged.kubernetes_version == "1.28"


def test_update_cluster_rejects_wrong_role(db_session: Session, cluster, worker_config):
    with pytest.raises(ValidationError):
        ClusterService.update_cluster(db_session, cluster.id, {"etcd_config_id": worker_config.id})


def test_delete_cluster_cascades_to_owned_rows(db_session: Session, cluster, datacenter_config):
    """Test that deleting a cluster soft-deletes what it owns but not shared config."""
    application = ApplicationService.create_application(db_session, {
        "cluster_id": cluster.id, "name": "app1", "namespace": "default",
    })
    tag = TagService.create_tag(db_session, {"key": "team", "value": "platform"})
    TagService.attach_cluster_tag(db_session, cluster.id, tag.id)
    TagService.attach_application_tag(db_session, application.id, tag.id)

    ClusterService.delete_cluster(db_session, cluster.id)

    with pytest.raises(NotFoundError):
        ClusterService.get_cluster(db_session, cluster.id)
    assert all(g.deleted_at is not None for g in db_session.query(WorkerNodeGroup).all())
    assert db_session.query(ArgoCDApplication).one().deleted_at is not None
    assert db_session.query(ClusterTag).one().deleted_at is not None
    assert list(TagService.list_application_tags(db_session, application.id)) == []

    datacenter = db_session.query(DatacenterConfiguration).filter_by(id=datacenter_config.id).one()
    assert datacenter.deleted_at is None
    assert TagService.get_tag(db_session, tag.id).deleted_at is None


def test_delete_cluster_twice_returns_not_found(db_session: Session, cluster):
    ClusterService.delete_cluster(db_session, cluster.id)
    with pytest.raises(NotFoundError):
        ClusterService.delete_cluster(db_session, cluster.id)


def test_add_and_scale_worker_node_group(db_session: Session, cluster, machine_config_factory):
    large = machine_config_factory("worker", name="large-worker", memory_mib=32768)

    group = ClusterService.add_worker_node_group(db_session, cluster.id, {
        "name": "md-large", "count": 1, "machine_config_id": large.id,
    })
    scaled = ClusterService.update_worker_node_group(db_session, group.id, {"count": 0})

    assert scaled.count == 0
    assert [g.name for g in ClusterService.list_worker_node_groups(db_session, cluster.id)] == ["md-0", "md-large"]

    ClusterService.delete_worker_node_group(db_session, group.id)
    assert [g.name for g in ClusterService.list_worker_node_groups(db_session, cluster.id)] == ["md-0"]


def test_worker_node_group_requires_live_cluster(db_session: Session, cluster, worker_config):
    ClusterService.delete_cluster(db_session, cluster.id)

    with pytest.raises(IntegrityError):
        ClusterService.add_worker_node_group(db_session, cluster.id, {
            "name": "md-1", "count": 1, "machine_config_id": worker_config.id,
        })


def test_worker_node_group_machine_config_must_be_worker(db_session: Session, cluster, control_plane_config):
    group = ClusterService.list_worker_node_groups(db_session, cluster.id)[0]

    with pytest.raises(ValidationError):
        ClusterService.update_worker_node_group(db_session, group.id, {"machine_config_id": control_plane_config.id})
    with pytest.raises(ValidationError):
        ClusterService.update_worker_node_group(db_session, group.id, {"count": -2})
