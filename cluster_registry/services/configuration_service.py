"""Service layer for shared configuration entities.

Datacenter configurations, cluster networks and machine configs are created
independently and referenced by any number of clusters. They are never
cascaded: soft-deleting one that a live cluster or worker node group still
references is refused (restrict policy).
"""

import json
import logging
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from cluster_registry.core.exceptions import ConflictError
from cluster_registry.db.base import unit_of_work
from cluster_registry.models.models import (
    Cluster,
    ClusterNetwork,
    DatacenterConfiguration,
    MachineConfig,
    MachineRole,
    WorkerNodeGroup,
)
from cluster_registry.schemas.schemas import (
    ClusterNetworkCreate,
    ClusterNetworkUpdate,
    DatacenterConfigurationCreate,
    DatacenterConfigurationUpdate,
    MachineConfigCreate,
    MachineConfigUpdate,
)
from cluster_registry.services.common import merge_update, require_live, soft_delete, validate_input

logger = logging.getLogger(__name__)


def _network_columns(data: ClusterNetworkCreate) -> dict[str, Any]:
    return {
        "cni_plugin": data.cni_plugin,
        "pods_cidr_blocks": json.dumps(data.pods_cidr_blocks),
        "services_cidr_blocks": json.dumps(data.services_cidr_blocks),
    }


def _machine_config_columns(data: MachineConfigCreate) -> dict[str, Any]:
    columns = data.model_dump(exclude={"annotations", "machine_role"})
    columns["annotations"] = json.dumps(data.annotations, sort_keys=True)
    columns["machine_role"] = data.machine_role.value
    return columns


def _assign(row: Any, columns: dict[str, Any]) -> None:
    for name, value in columns.items():
        setattr(row, name, value)


class ConfigurationService:
    """Service for datacenter configurations, cluster networks and machine configs."""

    # Datacenter configurations

    @staticmethod
    def create_datacenter_configuration(db: Session, data: DatacenterConfigurationCreate | dict) -> DatacenterConfiguration:
        """Create a datacenter configuration.

        Raises:
            ValidationError: If the thumbprint is missing on a secure connection
                or a required field is empty
        """
        data = validate_input(DatacenterConfigurationCreate, data)
        with unit_of_work(db):
            config = DatacenterConfiguration(**data.model_dump())
            db.add(config)
        db.refresh(config)
        logger.info(f"Datacenter configuration created: id={config.id}, name='{config.name}'")
        return config

    @staticmethod
    def get_datacenter_configuration(db: Session, config_id: int) -> DatacenterConfiguration:
        return require_live(db, DatacenterConfiguration, config_id)

    @staticmethod
    def list_datacenter_configurations(db: Session, skip: int = 0, limit: int = 100) -> list[DatacenterConfiguration]:
        return (
            db.query(DatacenterConfiguration)
            .filter(DatacenterConfiguration.deleted_at.is_(None))
            .order_by(DatacenterConfiguration.id.desc())
            .offset(skip).limit(limit).all()
        )

    @staticmethod
    def update_datacenter_configuration(
        db: Session, config_id: int, data: DatacenterConfigurationUpdate | dict
    ) -> DatacenterConfiguration:
        with unit_of_work(db):
            config = require_live(db, DatacenterConfiguration, config_id, lock=True)
            merged = merge_update(config, DatacenterConfigurationCreate, DatacenterConfigurationUpdate, data)
            _assign(config, merged.model_dump())
        db.refresh(config)
        logger.info(f"Datacenter configuration updated: id={config.id}")
        return config

    @staticmethod
    def delete_datacenter_configuration(db: Session, config_id: int) -> DatacenterConfiguration:
        """Soft-delete a datacenter configuration no live cluster references.

        Raises:
            NotFoundError: If the configuration is absent or already deleted
            ConflictError: If a live cluster still references it
        """
        with unit_of_work(db):
            config = require_live(db, DatacenterConfiguration, config_id, lock=True)
            in_use = db.query(Cluster).filter(
                Cluster.datacenter_config_id == config_id,
                Cluster.deleted_at.is_(None),
            ).count()
            if in_use:
                logger.warning(f"Refusing to delete datacenter configuration {config_id}: {in_use} live cluster(s)")
                raise ConflictError(
                    f"DatacenterConfiguration {config_id} is referenced by {in_use} live cluster(s)"
                )
            soft_delete(config)
        logger.info(f"Datacenter configuration deleted: id={config_id}")
        return config

    # Cluster networks

    @staticmethod
    def create_cluster_network(db: Session, data: ClusterNetworkCreate | dict) -> ClusterNetwork:
        """Create a cluster network.

        Raises:
            ValidationError: If a CIDR block is malformed or two blocks overlap
        """
        data = validate_input(ClusterNetworkCreate, data)
        with unit_of_work(db):
            network = ClusterNetwork(**_network_columns(data))
            db.add(network)
        db.refresh(network)
        logger.info(f"Cluster network created: id={network.id}, cni_plugin='{network.cni_plugin}'")
        return network

    @staticmethod
    def get_cluster_network(db: Session, network_id: int) -> ClusterNetwork:
        return require_live(db, ClusterNetwork, network_id)

    @staticmethod
    def list_cluster_networks(db: Session, skip: int = 0, limit: int = 100) -> list[ClusterNetwork]:
        return (
            db.query(ClusterNetwork)
            .filter(ClusterNetwork.deleted_at.is_(None))
            .order_by(ClusterNetwork.id.desc())
            .offset(skip).limit(limit).all()
        )

    @staticmethod
    def update_cluster_network(db: Session, network_id: int, data: ClusterNetworkUpdate | dict) -> ClusterNetwork:
        with unit_of_work(db):
            network = require_live(db, ClusterNetwork, network_id, lock=True)
            merged = merge_update(network, ClusterNetworkCreate, ClusterNetworkUpdate, data)
            _assign(network, _network_columns(merged))
        db.refresh(network)
        logger.info(f"Cluster network updated: id={network.id}")
        return network

    @staticmethod
    def delete_cluster_network(db: Session, network_id: int) -> ClusterNetwork:
        with unit_of_work(db):
            network = require_live(db, ClusterNetwork, network_id, lock=True)
            in_use = db.query(Cluster).filter(
                Cluster.cluster_network_id == network_id,
                Cluster.deleted_at.is_(None),
            ).count()
            if in_use:
                logger.warning(f"Refusing to delete cluster network {network_id}: {in_use} live cluster(s)")
                raise ConflictError(f"ClusterNetwork {network_id} is referenced by {in_use} live cluster(s)")
            soft_delete(network)
        logger.info(f"Cluster network deleted: id={network_id}")
        return network

    # Machine configs

    @staticmethod
    def create_machine_config(db: Session, data: MachineConfigCreate | dict) -> MachineConfig:
        """Create a machine config.

        Raises:
            ValidationError: If machine_role is not control-plane, etcd or worker,
                or disk, memory or CPU count is not positive
        """
        data = validate_input(MachineConfigCreate, data)
        with unit_of_work(db):
            machine_config = MachineConfig(**_machine_config_columns(data))
            db.add(machine_config)
        db.refresh(machine_config)
        logger.info(
            f"Machine config created: id={machine_config.id}, name='{machine_config.name}', "
            f"role={machine_config.machine_role}"
        )
        return machine_config

    @staticmethod
    def get_machine_config(db: Session, config_id: int) -> MachineConfig:
        return require_live(db, MachineConfig, config_id)

    @staticmethod
    def list_machine_configs(
        db: Session, machine_role: MachineRole | None = None, skip: int = 0, limit: int = 100
    ) -> list[MachineConfig]:
        query = db.query(MachineConfig).filter(MachineConfig.deleted_at.is_(None))
        if machine_role:
            query = query.filter(MachineConfig.machine_role == MachineRole(machine_role).value)
        return query.order_by(MachineConfig.id.desc()).offset(skip).limit(limit).all()

    @staticmethod
    def update_machine_config(db: Session, config_id: int, data: MachineConfigUpdate | dict) -> MachineConfig:
        """Update a machine config in place.

        The role cannot change while live clusters or worker node groups use
        the config, since each of them depends on the current role.

        Raises:
            NotFoundError: If the config is absent or soft-deleted
            ValidationError: If the merged record violates a constraint
            ConflictError: If the role changes while the config is referenced
        """
        with unit_of_work(db):
            machine_config = require_live(db, MachineConfig, config_id, lock=True)
            merged = merge_update(machine_config, MachineConfigCreate, MachineConfigUpdate, data)
            if merged.machine_role.value != machine_config.machine_role:
                references = ConfigurationService.count_machine_config_references(db, config_id)
                if references:
                    raise ConflictError(
                        f"Cannot change role of MachineConfig {config_id} from "
                        f"{machine_config.machine_role} to {merged.machine_role.value}: "
                        f"referenced by {references} live row(s)"
                    )
            _assign(machine_config, _machine_config_columns(merged))
        db.refresh(machine_config)
        logger.info(f"Machine config updated: id={machine_config.id}")
        return machine_config

    @staticmethod
    def count_machine_config_references(db: Session, config_id: int) -> int:
        """Count live clusters and worker node groups using a machine config."""
        clusters = db.query(Cluster).filter(
            or_(Cluster.control_plane_config_id == config_id, Cluster.etcd_config_id == config_id),
            Cluster.deleted_at.is_(None),
        ).count()
        worker_groups = db.query(WorkerNodeGroup).filter(
            WorkerNodeGroup.machine_config_id == config_id,
            WorkerNodeGroup.deleted_at.is_(None),
        ).count()
        return clusters + worker_groups

    @staticmethod
    def delete_machine_config(db: Session, config_id: int) -> MachineConfig:
        with unit_of_work(db):
            machine_config = require_live(db, MachineConfig, config_id, lock=True)
            references = ConfigurationService.count_machine_config_references(db, config_id)
            if references:
                logger.warning(f"Refusing to delete machine config {config_id}: {references} live reference(s)")
                raise ConflictError(
                    f"MachineConfig {config_id} is referenced by {references} live cluster(s) or worker node group(s)"
                )
            soft_delete(machine_config)
        logger.info(f"Machine config deleted: id={config_id}")
        return machine_config
