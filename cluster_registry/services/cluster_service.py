"""Service layer for the cluster aggregate.

A cluster references a datacenter configuration, a cluster network, a
control-plane machine config, an etcd machine config and an environment. It
owns its worker node groups, its ArgoCD applications and its cluster tags.

Every operation here runs as a single unit of work: the referenced rows are
locked and checked, then all rows are written, or nothing is.
"""

import logging

from sqlalchemy.orm import Session

from cluster_registry.core.exceptions import ValidationError
from cluster_registry.db.base import unit_of_work
from cluster_registry.models.models import (
    ApplicationTag,
    ArgoCDApplication,
    Cluster,
    ClusterNetwork,
    ClusterTag,
    DatacenterConfiguration,
    Environment,
    MachineConfig,
    MachineRole,
    WorkerNodeGroup,
    utcnow,
)
from cluster_registry.schemas.schemas import (
    ClusterCreate,
    ClusterUpdate,
    WorkerNodeGroupCreate,
    WorkerNodeGroupUpdate,
)
from cluster_registry.services.common import (
    merge_update,
    require_live,
    require_reference,
    soft_delete,
    validate_input,
)

logger = logging.getLogger(__name__)


def _require_machine_config(db: Session, config_id: int, role: MachineRole, field: str) -> MachineConfig:
    machine_config = require_reference(db, MachineConfig, config_id, field)
    if machine_config.machine_role != role.value:
        raise ValidationError(
            f"{field} must reference a {role.value} machine config, "
            f"MachineConfig {config_id} has role {machine_config.machine_role}"
        )
    return machine_config


class ClusterService:
    """Service for managing clusters and their worker node groups."""

    @staticmethod
    def _resolve_references(db: Session, data: ClusterCreate) -> None:
        """Lock and verify every row a cluster record points at.

        Raises:
            IntegrityError: If any referenced row is absent or soft-deleted
            ValidationError: If a machine config has the wrong role
        """
        require_reference(db, DatacenterConfiguration, data.datacenter_config_id, "datacenter_config_id")
        require_reference(db, ClusterNetwork, data.cluster_network_id, "cluster_network_id")
        _require_machine_config(db, data.control_plane_config_id, MachineRole.CONTROL_PLANE, "control_plane_config_id")
        _require_machine_config(db, data.etcd_config_id, MachineRole.ETCD, "etcd_config_id")
        require_reference(db, Environment, data.environment_id, "environment_id")

    @staticmethod
    def create_cluster(
        db: Session,
        cluster_data: ClusterCreate | dict,
        worker_node_groups: list[WorkerNodeGroupCreate | dict] | None = None,
    ) -> Cluster:
        """Create a cluster together with its worker node groups.

        Args:
            db: Database session
            cluster_data: Cluster fields and references
            worker_node_groups: Worker node groups to create under the cluster

        Returns:
            Created Cluster object

        Raises:
            ValidationError: On a bad field, an unknown cluster type or a
                machine config with the wrong role
            IntegrityError: If a referenced row is absent or soft-deleted
        """
        data = validate_input(ClusterCreate, cluster_data)
        groups = [validate_input(WorkerNodeGroupCreate, group) for group in worker_node_groups or []]

        with unit_of_work(db):
            ClusterService._resolve_references(db, data)
            for group in groups:
                _require_machine_config(
                    db, group.machine_config_id, MachineRole.WORKER, f"worker node group '{group.name}'"
                )

            cluster = Cluster(**data.model_dump(mode="json"))
            db.add(cluster)
            db.flush()  # Get cluster.id

            for group in groups:
                db.add(WorkerNodeGroup(cluster_id=cluster.id, **group.model_dump()))

        db.refresh(cluster)
        logger.info(
            f"Cluster created: id={cluster.id}, name='{cluster.name}', type={cluster.cluster_type}, "
            f"worker_node_groups={len(groups)}"
        )
        return cluster

    @staticmethod
    def get_cluster(db: Session, cluster_id: int) -> Cluster:
        return require_live(db, Cluster, cluster_id)

    @staticmethod
    def list_clusters(
        db: Session,
        environment_id: int | None = None,
        cluster_type: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Cluster]:
        """List live clusters, most recent first."""
        query = db.query(Cluster).filter(Cluster.deleted_at.is_(None))
        if environment_id:
            query = query.filter(Cluster.environment_id == environment_id)
        if cluster_type:
            query = query.filter(Cluster.cluster_type == cluster_type)
        return query.order_by(Cluster.id.desc()).offset(skip).limit(limit).all()

    @staticmethod
    def update_cluster(db: Session, cluster_id: int, data: ClusterUpdate | dict) -> Cluster:
        """Replace scalar fields and swap references of a live cluster.

        The merged record is checked exactly like a new cluster.
        """
        with unit_of_work(db):
            cluster = require_live(db, Cluster, cluster_id, lock=True)
            merged = merge_update(cluster, ClusterCreate, ClusterUpdate, data)
            ClusterService._resolve_references(db, merged)
            for name, value in merged.model_dump(mode="json").items():
                setattr(cluster, name, value)
        db.refresh(cluster)
        logger.info(f"Cluster updated: id={cluster.id}, name='{cluster.name}'")
        return cluster

    @staticmethod
    def delete_cluster(db: Session, cluster_id: int) -> Cluster:
        """Soft-delete a cluster and everything it owns.

        Worker node groups, ArgoCD applications, the tags attached to those
        applications and the cluster's own tags are marked deleted with the same
        timestamp. Shared configuration rows are left untouched.
        """
        now = utcnow()
        with unit_of_work(db):
            cluster = require_live(db, Cluster, cluster_id, lock=True)

            groups = db.query(WorkerNodeGroup).filter(
                WorkerNodeGroup.cluster_id == cluster_id,
                WorkerNodeGroup.deleted_at.is_(None),
            ).update({WorkerNodeGroup.deleted_at: now}, synchronize_session=False)

            application_ids = db.query(ArgoCDApplication.id).filter(
                ArgoCDApplication.cluster_id == cluster_id,
                ArgoCDApplication.deleted_at.is_(None),
            )
            db.query(ApplicationTag).filter(
                ApplicationTag.application_id.in_(application_ids.scalar_subquery()),
                ApplicationTag.deleted_at.is_(None),
            ).update({ApplicationTag.deleted_at: now}, synchronize_session=False)
            applications = db.query(ArgoCDApplication).filter(
                ArgoCDApplication.cluster_id == cluster_id,
                ArgoCDApplication.deleted_at.is_(None),
            ).update({ArgoCDApplication.deleted_at: now}, synchronize_session=False)

            tags = db.query(ClusterTag).filter(
                ClusterTag.cluster_id == cluster_id,
                ClusterTag.deleted_at.is_(None),
            ).update({ClusterTag.deleted_at: now}, synchronize_session=False)

            soft_delete(cluster, now)

        logger.info(
            f"Cluster deleted: id={cluster_id}, worker_node_groups={groups}, "
            f"applications={applications}, tags={tags}"
        )
        return cluster

    # Worker node groups

    @staticmethod
    def list_worker_node_groups(db: Session, cluster_id: int) -> list[WorkerNodeGroup]:
        return db.query(WorkerNodeGroup).filter(
            WorkerNodeGroup.cluster_id == cluster_id,
            WorkerNodeGroup.deleted_at.is_(None),
        ).order_by(WorkerNodeGroup.id).all()

    @staticmethod
    def get_worker_node_group(db: Session, group_id: int) -> WorkerNodeGroup:
        return require_live(db, WorkerNodeGroup, group_id)

    @staticmethod
    def add_worker_node_group(db: Session, cluster_id: int, data: WorkerNodeGroupCreate | dict) -> WorkerNodeGroup:
        """Add a worker node group to a live cluster.

        Raises:
            IntegrityError: If the cluster or machine config is absent or deleted
            ValidationError: If the machine config is not a worker config
        """
        data = validate_input(WorkerNodeGroupCreate, data)
        with unit_of_work(db):
            require_reference(db, Cluster, cluster_id, "cluster_id")
            _require_machine_config(db, data.machine_config_id, MachineRole.WORKER, "machine_config_id")
            group = WorkerNodeGroup(cluster_id=cluster_id, **data.model_dump())
            db.add(group)
        db.refresh(group)
        logger.info(f"Worker node group added: id={group.id}, cluster_id={cluster_id}, count={group.count}")
        return group

    @staticmethod
    def update_worker_node_group(db: Session, group_id: int, data: WorkerNodeGroupUpdate | dict) -> WorkerNodeGroup:
        """Rename, rescale or swap the machine config of a worker node group."""
        with unit_of_work(db):
            group = require_live(db, WorkerNodeGroup, group_id, lock=True)
            merged = merge_update(group, WorkerNodeGroupCreate, WorkerNodeGroupUpdate, data)
            _require_machine_config(db, merged.machine_config_id, MachineRole.WORKER, "machine_config_id")
            for name, value in merged.model_dump().items():
                setattr(group, name, value)
        db.refresh(group)
        logger.info(f"Worker node group updated: id={group.id}, count={group.count}")
        return group

    @staticmethod
    def delete_worker_node_group(db: Session, group_id: int) -> WorkerNodeGroup:
        with unit_of_work(db):
            group = require_live(db, WorkerNodeGroup, group_id, lock=True)
            soft_delete(group)
        logger.info(f"Worker node group deleted: id={group_id}")
        return group
