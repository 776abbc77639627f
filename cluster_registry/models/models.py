"""Database models for the cluster registry.

This module declares every table, column and constraint of the registry:
- DatacenterConfiguration, ClusterNetwork, MachineConfig: shared configuration
  rows referenced by clusters
- Cluster: the provisioned cluster aggregate
- WorkerNodeGroup, ArgoCDApplication: rows owned by a single cluster
- Tag, ClusterTag, ApplicationTag: key/value labels and their join rows
- Environment: deployment stage classification

Primary entities carry their own id, created_at, updated_at and deleted_at
columns. A non-null deleted_at marks the row as soft-deleted. Join rows use a
composite primary key and only carry created_at/deleted_at plus an insertion
position.

Enum and range rules are declared as CHECK constraints so they hold even for
writes that bypass the service layer. Uniqueness among live rows is declared
as partial unique indexes (WHERE deleted_at IS NULL).
"""

import json
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from cluster_registry.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


LIVE_ROWS = text("deleted_at IS NULL")


class MachineRole(str, Enum):
    """Role a machine template is provisioned for."""
    CONTROL_PLANE = "control-plane"
    ETCD = "etcd"
    WORKER = "worker"


class ClusterType(str, Enum):
    MANAGEMENT = "Management"
    WORKER = "Worker"


class EnvironmentName(str, Enum):
    """Deployment stages a cluster can be classified under."""
    DEV = "DEV"
    QA = "QA"
    UAT = "UAT"
    PROD = "PROD"


class CapabilityKind(str, Enum):
    """Extension points reserved for future platform capabilities.

    These carry no behavior and have no tables yet.
    """
    HARBOR_REGISTRY = "HarborRegistry"
    MINIO = "MinIO"
    ARGOCD = "ArgoCD"
    APPLICATION_TIER = "ApplicationTier"


def _in_list(column: str, enum_cls: type[Enum]) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class DatacenterConfiguration(Base):
    """Connection and target parameters for a provisioning datacenter."""
    __tablename__ = "datacenter_configurations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    datacenter = Column(String(255), nullable=False)
    network = Column(String(255), nullable=False)
    server = Column(String(512), nullable=False)
    insecure = Column(Boolean, default=False, nullable=False)
    thumbprint = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        CheckConstraint(
            "insecure OR (thumbprint IS NOT NULL AND thumbprint <> '')",
            name="ck_datacenter_configurations_thumbprint",
        ),
    )

    def __repr__(self):
        return f"<DatacenterConfiguration(id={self.id}, name='{self.name}', server='{self.server}')>"


class ClusterNetwork(Base):
    """CNI plugin and CIDR allocation for a cluster.

    CIDR block sets are stored as JSON arrays in text columns.
    """
    __tablename__ = "cluster_networks"

    id = Column(Integer, primary_key=True, index=True)
    cni_plugin = Column(String(100), nullable=False)
    pods_cidr_blocks = Column(Text, nullable=False)
    services_cidr_blocks = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    @property
    def pods_cidrs(self) -> list[str]:
        return json.loads(self.pods_cidr_blocks)

    @property
    def services_cidrs(self) -> list[str]:
        return json.loads(self.services_cidr_blocks)

    def __repr__(self):
        return f"<ClusterNetwork(id={self.id}, cni_plugin='{self.cni_plugin}')>"


class MachineConfig(Base):
    """A machine template (compute and storage shape) tagged with a role."""
    __tablename__ = "machine_configs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    annotations = Column(Text, nullable=True)  # JSON object
    clone_mode = Column(String(50), nullable=True)
    datastore = Column(String(255), nullable=True)
    disk_gib = Column(Integer, nullable=False)
    folder = Column(String(512), nullable=True)
    memory_mib = Column(Integer, nullable=False)
    num_cpus = Column(Integer, nullable=False)
    os_family = Column(String(50), nullable=True)
    resource_pool = Column(String(512), nullable=True)
    template = Column(String(512), nullable=True)
    machine_role = Column(String(20), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        CheckConstraint(_in_list("machine_role", MachineRole), name="ck_machine_configs_machine_role"),
        CheckConstraint("disk_gib > 0", name="ck_machine_configs_disk_gib"),
        CheckConstraint("memory_mib > 0", name="ck_machine_configs_memory_mib"),
        CheckConstraint("num_cpus > 0", name="ck_machine_configs_num_cpus"),
    )

    @property
    def annotation_map(self) -> dict[str, str]:
        return json.loads(self.annotations) if self.annotations else {}

    def __repr__(self):
        return f"<MachineConfig(id={self.id}, name='{self.name}', role='{self.machine_role}')>"


class Environment(Base):
    """Deployment stage classification (DEV/QA/UAT/PROD)."""
    __tablename__ = "environments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(10), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        CheckConstraint(_in_list("name", EnvironmentName), name="ck_environments_name"),
        Index(
            "uq_environments_name_live", "name", unique=True,
            sqlite_where=LIVE_ROWS, postgresql_where=LIVE_ROWS,
        ),
    )

    def __repr__(self):
        return f"<Environment(id={self.id}, name='{self.name}')>"


class Cluster(Base):
    """A provisioned Kubernetes cluster.

    References shared configuration rows without owning them. Worker node
    groups, applications and cluster tags are owned and are soft-deleted
    together with the cluster.
    """
    __tablename__ = "clusters"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    namespace = Column(String(255), nullable=False)
    eksa_version = Column(String(50), nullable=True)
    kubernetes_version = Column(String(50), nullable=False)
    cluster_type = Column(String(20), nullable=False)
    datacenter_config_id = Column(
        Integer, ForeignKey("datacenter_configurations.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    cluster_network_id = Column(
        Integer, ForeignKey("cluster_networks.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    control_plane_config_id = Column(
        Integer, ForeignKey("machine_configs.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    etcd_config_id = Column(
        Integer, ForeignKey("machine_configs.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    environment_id = Column(
        Integer, ForeignKey("environments.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        CheckConstraint(_in_list("cluster_type", ClusterType), name="ck_clusters_cluster_type"),
    )

    # Relationships
    datacenter_configuration = relationship("DatacenterConfiguration")
    cluster_network = relationship("ClusterNetwork")
    control_plane_config = relationship("MachineConfig", foreign_keys=[control_plane_config_id])
    etcd_config = relationship("MachineConfig", foreign_keys=[etcd_config_id])
    environment = relationship("Environment")
    # Owned rows that are still live
    worker_node_groups = relationship(
        "WorkerNodeGroup",
        primaryjoin="and_(Cluster.id == WorkerNodeGroup.cluster_id, WorkerNodeGroup.deleted_at.is_(None))",
        order_by="WorkerNodeGroup.id",
        viewonly=True,
    )
    applications = relationship(
        "ArgoCDApplication",
        primaryjoin="and_(Cluster.id == ArgoCDApplication.cluster_id, ArgoCDApplication.deleted_at.is_(None))",
        order_by="ArgoCDApplication.id",
        viewonly=True,
    )

    def __repr__(self):
        return f"<Cluster(id={self.id}, name='{self.name}', type='{self.cluster_type}')>"


class WorkerNodeGroup(Base):
    """A named pool of worker machines within a cluster."""
    __tablename__ = "worker_node_groups"

    id = Column(Integer, primary_key=True, index=True)
    cluster_id = Column(Integer, ForeignKey("clusters.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    count = Column(Integer, nullable=False, default=0)
    machine_config_id = Column(
        Integer, ForeignKey("machine_configs.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        CheckConstraint("count >= 0", name="ck_worker_node_groups_count"),
    )

    # Relationships
    cluster = relationship("Cluster")
    machine_config = relationship("MachineConfig")

    def __repr__(self):
        return f"<WorkerNodeGroup(id={self.id}, name='{self.name}', count={self.count})>"


class ArgoCDApplication(Base):
    """A GitOps application deployed to a cluster.

    sync_policy is stored verbatim; its structure is the caller's concern.
    """
    __tablename__ = "argocd_applications"

    id = Column(Integer, primary_key=True, index=True)
    cluster_id = Column(Integer, ForeignKey("clusters.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    namespace = Column(String(255), nullable=False)
    repo_url = Column(String(1024), nullable=True)
    path = Column(String(1024), nullable=True)
    target_revision = Column(String(255), nullable=True)
    project = Column(String(255), nullable=True)
    sync_policy = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        Index(
            "uq_argocd_applications_cluster_name_namespace_live",
            "cluster_id", "name", "namespace", unique=True,
            sqlite_where=LIVE_ROWS, postgresql_where=LIVE_ROWS,
        ),
    )

    # Relationships
    cluster = relationship("Cluster")

    def __repr__(self):
        return f"<ArgoCDApplication(id={self.id}, name='{self.name}', namespace='{self.namespace}')>"


class Tag(Base):
    """A key/value label shared by clusters and applications."""
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(255), nullable=False, index=True)
    value = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        Index(
            "uq_tags_key_value_live", "key", "value", unique=True,
            sqlite_where=LIVE_ROWS, postgresql_where=LIVE_ROWS,
        ),
    )

    def __repr__(self):
        return f"<Tag(id={self.id}, {self.key}={self.value})>"


class ClusterTag(Base):
    __tablename__ = "cluster_tags"

    cluster_id = Column(Integer, ForeignKey("clusters.id"), primary_key=True)
    tag_id = Column(Integer, ForeignKey("tags.id"), primary_key=True)
    position = Column(Integer, nullable=False)  # attach order within the cluster
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    cluster = relationship("Cluster")
    tag = relationship("Tag")

    def __repr__(self):
        return f"<ClusterTag(cluster_id={self.cluster_id}, tag_id={self.tag_id})>"


class ApplicationTag(Base):
    __tablename__ = "application_tags"

    application_id = Column(Integer, ForeignKey("argocd_applications.id"), primary_key=True)
    tag_id = Column(Integer, ForeignKey("tags.id"), primary_key=True)
    position = Column(Integer, nullable=False)  # attach order within the application
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    application = relationship("ArgoCDApplication")
    tag = relationship("Tag")

    def __repr__(self):
        return f"<ApplicationTag(application_id={self.application_id}, tag_id={self.tag_id})>"
