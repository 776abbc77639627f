"""Pydantic schemas validating registry writes and serializing reads.

Create schemas validate a full record; Update schemas carry only the fields a
caller wants to change and are merged onto the stored row, then re-validated
through the matching Create schema. Services translate pydantic failures into
cluster_registry.core.exceptions.ValidationError.
"""

import ipaddress
import json
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cluster_registry.models.models import ClusterType, EnvironmentName, MachineRole


class ReadModel(BaseModel):
    """Base for read schemas built from ORM rows."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None


# Datacenter Configuration Schemas
class DatacenterConfigurationCreate(BaseModel):
    """Schema for creating a datacenter configuration."""
    name: str = Field(..., min_length=1, max_length=255)
    datacenter: str = Field(..., min_length=1, max_length=255)
    network: str = Field(..., min_length=1, max_length=255)
    server: str = Field(..., min_length=1, max_length=512, description="vCenter or API endpoint")
    insecure: bool = False
    thumbprint: Optional[str] = Field(None, description="TLS certificate thumbprint")

    @model_validator(mode="after")
    def require_thumbprint_when_secure(self):
        if not self.insecure and not self.thumbprint:
            raise ValueError("thumbprint is required unless insecure is true")
        return self


class DatacenterConfigurationUpdate(BaseModel):
    name: Optional[str] = None
    datacenter: Optional[str] = None
    network: Optional[str] = None
    server: Optional[str] = None
    insecure: Optional[bool] = None
    thumbprint: Optional[str] = None


class DatacenterConfigurationResponse(ReadModel):
    name: str
    datacenter: str
    network: str
    server: str
    insecure: bool
    thumbprint: Optional[str]


# Cluster Network Schemas
class ClusterNetworkCreate(BaseModel):
    """Schema for creating a cluster network.

    Every block must be a valid CIDR and no two blocks of the network, pod or
    service, may overlap.
    """
    cni_plugin: str = Field(..., min_length=1, max_length=100, description="e.g. cilium, kindnetd")
    pods_cidr_blocks: List[str] = Field(..., min_length=1)
    services_cidr_blocks: List[str] = Field(..., min_length=1)

    @field_validator("pods_cidr_blocks", "services_cidr_blocks", mode="before")
    @classmethod
    def decode_serialized_blocks(cls, value):
        # Stored rows hold the JSON text form
        if isinstance(value, str):
            return json.loads(value)
        return value

    @field_validator("pods_cidr_blocks", "services_cidr_blocks")
    @classmethod
    def normalize_blocks(cls, blocks: List[str]) -> List[str]:
        try:
            return [str(ipaddress.ip_network(block, strict=True)) for block in blocks]
        except ValueError as exc:
            raise ValueError(f"invalid CIDR block: {exc}") from exc

    @model_validator(mode="after")
    def reject_overlapping_blocks(self):
        networks = [ipaddress.ip_network(b) for b in self.pods_cidr_blocks + self.services_cidr_blocks]
        for i, first in enumerate(networks):
            for second in networks[i + 1:]:
                if first.version == second.version and first.overlaps(second):
                    raise ValueError(f"CIDR blocks {first} and {second} overlap")
        return self


class ClusterNetworkUpdate(BaseModel):
    cni_plugin: Optional[str] = None
    pods_cidr_blocks: Optional[List[str]] = None
    services_cidr_blocks: Optional[List[str]] = None


class ClusterNetworkResponse(ReadModel):
    cni_plugin: str
    pods_cidrs: List[str]
    services_cidrs: List[str]


# Machine Config Schemas
class MachineConfigCreate(BaseModel):
    """Schema for creating a machine config."""
    name: str = Field(..., min_length=1, max_length=255)
    annotations: Dict[str, str] = Field(default_factory=dict)
    clone_mode: Optional[str] = Field(None, description="e.g. linkedClone, fullClone")
    datastore: Optional[str] = None
    disk_gib: int = Field(..., gt=0, description="Disk size in GiB")
    folder: Optional[str] = None
    memory_mib: int = Field(..., gt=0, description="Memory in MiB")
    num_cpus: int = Field(..., gt=0)
    os_family: Optional[str] = None
    resource_pool: Optional[str] = None
    template: Optional[str] = None
    machine_role: MachineRole

    @field_validator("annotations", mode="before")
    @classmethod
    def decode_serialized_annotations(cls, value):
        if value is None:
            return {}
        if isinstance(value, str):
            return json.loads(value)
        return value


class MachineConfigUpdate(BaseModel):
    name: Optional[str] = None
    annotations: Optional[Dict[str, str]] = None
    clone_mode: Optional[str] = None
    datastore: Optional[str] = None
    disk_gib: Optional[int] = None
    folder: Optional[str] = None
    memory_mib: Optional[int] = None
    num_cpus: Optional[int] = None
    os_family: Optional[str] = None
    resource_pool: Optional[str] = None
    template: Optional[str] = None
    machine_role: Optional[MachineRole] = None


class MachineConfigResponse(ReadModel):
    name: str
    annotation_map: Dict[str, str]
    clone_mode: Optional[str]
    datastore: Optional[str]
    disk_gib: int
    folder: Optional[str]
    memory_mib: int
    num_cpus: int
    os_family: Optional[str]
    resource_pool: Optional[str]
    template: Optional[str]
    machine_role: str


# Environment Schemas
class EnvironmentCreate(BaseModel):
    name: EnvironmentName


class EnvironmentResponse(ReadModel):
    name: str


# Cluster Schemas
class WorkerNodeGroupCreate(BaseModel):
    """Schema for a worker node group, created with or added to a cluster."""
    name: str = Field(..., min_length=1, max_length=255)
    count: int = Field(..., ge=0, description="Number of worker machines")
    machine_config_id: int


class WorkerNodeGroupUpdate(BaseModel):
    name: Optional[str] = None
    count: Optional[int] = None
    machine_config_id: Optional[int] = None


class WorkerNodeGroupResponse(ReadModel):
    cluster_id: int
    name: str
    count: int
    machine_config_id: int


class ClusterCreate(BaseModel):
    """Schema for creating a cluster."""
    name: str = Field(..., min_length=1, max_length=255)
    namespace: str = Field("default", min_length=1, max_length=255)
    eksa_version: Optional[str] = Field(None, description="Platform (EKS Anywhere) version")
    kubernetes_version: str = Field(..., min_length=1, max_length=50)
    cluster_type: ClusterType
    datacenter_config_id: int
    cluster_network_id: int
    control_plane_config_id: int
    etcd_config_id: int
    environment_id: int


class ClusterUpdate(BaseModel):
    name: Optional[str] = None
    namespace: Optional[str] = None
    eksa_version: Optional[str] = None
    kubernetes_version: Optional[str] = None
    cluster_type: Optional[ClusterType] = None
    datacenter_config_id: Optional[int] = None
    cluster_network_id: Optional[int] = None
    control_plane_config_id: Optional[int] = None
    etcd_config_id: Optional[int] = None
    environment_id: Optional[int] = None


class ClusterResponse(ReadModel):
    name: str
    namespace: str
    eksa_version: Optional[str]
    kubernetes_version: str
    cluster_type: str
    datacenter_config_id: int
    cluster_network_id: int
    control_plane_config_id: int
    etcd_config_id: int
    environment_id: int


class ClusterDetail(ClusterResponse):
    """Cluster with its live worker node groups."""
    worker_node_groups: List[WorkerNodeGroupResponse]


# ArgoCD Application Schemas
class ArgoCDApplicationCreate(BaseModel):
    """Schema for binding a GitOps application to a cluster."""
    cluster_id: int
    name: str = Field(..., min_length=1, max_length=255)
    namespace: str = Field(..., min_length=1, max_length=255)
    repo_url: Optional[str] = None
    path: Optional[str] = None
    target_revision: Optional[str] = Field(None, description="Branch, tag or commit")
    project: Optional[str] = None
    sync_policy: Optional[str] = Field(None, description="Serialized sync policy, stored as-is")


class ArgoCDApplicationUpdate(BaseModel):
    name: Optional[str] = None
    namespace: Optional[str] = None
    repo_url: Optional[str] = None
    path: Optional[str] = None
    target_revision: Optional[str] = None
    project: Optional[str] = None
    sync_policy: Optional[str] = None


class ArgoCDApplicationResponse(ReadModel):
    cluster_id: int
    name: str
    namespace: str
    repo_url: Optional[str]
    path: Optional[str]
    target_revision: Optional[str]
    project: Optional[str]
    sync_policy: Optional[str]


# Tag Schemas
class TagCreate(BaseModel):
    key: str = Field(..., min_length=1, max_length=255)
    value: str = Field(..., max_length=255)


class TagResponse(ReadModel):
    key: str
    value: str
