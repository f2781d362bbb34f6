"""Data models for the cluster snapshot and the dashboard tables."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple


# Radio group name -> selected option identifier, echoed back by the widget.
RadioDrivenState = Dict[str, str]

UNKNOWN = "Unknown"
DELETED = "DELETED"


class NodeRole(str, Enum):
    """Cluster roles as they appear in the dashboard."""
    STATEFUL = "stateful"
    STATELESS = "stateless"
    CONTROLLER = "controller"


class Liveness(str, Enum):
    """Liveness reported by the control plane."""
    ALIVE = "alive"
    DEAD = "dead"
    SUSPECT = "suspect"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Liveness":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class StorageState(str, Enum):
    """Log-server storage state from the node registry."""
    PROVISIONING = "provisioning"
    DISABLED = "disabled"
    READ_ONLY = "read-only"
    READ_WRITE = "read-write"
    GONE = "gone"
    DATA_LOSS = "data-loss"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "StorageState":
        normalized = (value or "").strip().lower().replace("_", "-")
        # the registry spells these in camel case
        normalized = {"readonly": "read-only", "readwrite": "read-write", "dataloss": "data-loss"}.get(
            normalized, normalized
        )
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class RoleCounts:
    """Desired/pending/running task counts for one role."""
    desired: int = 0
    pending: int = 0
    running: int = 0


@dataclass(frozen=True)
class Summary:
    """Headline numbers for the overview tab."""
    cluster_name: str = ""
    license_org: str = UNKNOWN
    cpu_utilization: float = 0.0  # percentage (0-100)
    memory_utilization: float = 0.0  # percentage (0-100)
    storage_utilization: float = 0.0  # percentage (0-100)
    stateful: RoleCounts = field(default_factory=RoleCounts)
    stateless: RoleCounts = field(default_factory=RoleCounts)
    controller: RoleCounts = field(default_factory=RoleCounts)
    deployment_status: str = UNKNOWN
    default_partitions: Optional[int] = None
    partition_replication: Optional[Dict[str, int]] = None
    log_replication: Optional[Dict[str, int]] = None


@dataclass(frozen=True)
class Certificate:
    arn: str = ""
    days_to_expiry: Optional[float] = None


@dataclass(frozen=True)
class Connectivity:
    """How clients reach the cluster."""
    load_balancer_arns: Tuple[str, ...] = ()
    target_group_arn: Optional[str] = None
    advertised_addresses: Dict[str, str] = field(default_factory=dict)
    vpc_id: str = ""
    subnet_ids: Tuple[str, ...] = ()
    security_group_ids: Tuple[str, ...] = ()
    ports: Dict[str, int] = field(default_factory=dict)
    certificate: Certificate = field(default_factory=Certificate)


@dataclass(frozen=True)
class ResourceUsage:
    """Per-task utilization from Container Insights, all percentages."""
    cpu: Optional[float] = None
    memory: Optional[float] = None
    storage: Optional[float] = None


@dataclass(frozen=True)
class Node:
    """A cluster member backed by (or formerly backed by) an ECS task."""
    role: NodeRole
    task_id: str
    task_arn: str = ""
    availability_zone: str = ""
    last_status: str = UNKNOWN
    desired_status: str = UNKNOWN
    health_status: str = UNKNOWN
    usage: ResourceUsage = field(default_factory=ResourceUsage)
    started_at: Optional[datetime] = None
    # cluster-aware nodes only
    node_id: Optional[str] = None  # N<id>:<generation>
    liveness: Optional[Liveness] = None
    # stateful nodes only
    storage_state: Optional[StorageState] = None
    leader_count: int = 0
    follower_count: int = 0
    nodeset_count: int = 0
    storage_size: Optional[int] = None  # GiB

    @property
    def deleted(self) -> bool:
        return self.last_status == DELETED

    @property
    def running(self) -> bool:
        return self.last_status == "RUNNING"


@dataclass(frozen=True)
class Nodes:
    stateful: List[Node] = field(default_factory=list)
    stateless: List[Node] = field(default_factory=list)
    controller: List[Node] = field(default_factory=list)

    def all(self) -> List[Node]:
        return self.stateful + self.stateless + self.controller


@dataclass(frozen=True)
class VolumeLimits:
    iops: float = 0.0
    throughput: float = 0.0  # MiB/s


@dataclass(frozen=True)
class Volume:
    """Backing store of a stateful task (EBS or ephemeral)."""
    id: str  # vol-xxx or ephemeral/<task-id>
    type: str  # gp3, io2, ..., ephemeral
    size: int  # GiB
    limits: VolumeLimits = field(default_factory=VolumeLimits)
    state: str = UNKNOWN
    health: str = UNKNOWN
    task_id: str = ""

    @property
    def ephemeral(self) -> bool:
        return self.type == EPHEMERAL


@dataclass(frozen=True)
class BucketStats:
    name: str = ""
    size_bytes: float = 0.0
    object_count: float = 0.0


@dataclass(frozen=True)
class Storage:
    bucket: BucketStats = field(default_factory=BucketStats)
    volumes: List[Volume] = field(default_factory=list)


@dataclass(frozen=True)
class Log:
    """One bifrost log chain, described by its tail segment."""
    id: int
    base_lsn: int
    segment: str  # loglet id of the active segment
    kind: str = ""
    sequencer: Optional[str] = None
    replication: Optional[Dict[str, int]] = None
    nodeset: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Partition:
    """One replica of a partition as reported by the partition state table."""
    id: int
    node_id: str
    mode: str = UNKNOWN  # effective mode: Leader, Follower, ...
    target_mode: str = UNKNOWN
    replay_status: str = UNKNOWN
    leader: Optional[str] = None
    applied_lsn: Optional[int] = None
    persisted_lsn: Optional[int] = None
    archived_lsn: Optional[int] = None
    target_tail_lsn: Optional[int] = None
    updated_at: str = ""

    @property
    def lag(self) -> int:
        if self.applied_lsn is None or self.target_tail_lsn is None:
            return 0
        return max(self.target_tail_lsn - self.applied_lsn, 0)


@dataclass(frozen=True)
class LogsInfo:
    count: int = 0
    info: List[Log] = field(default_factory=list)


@dataclass(frozen=True)
class PartitionsInfo:
    count: int = 0
    info: List[Partition] = field(default_factory=list)


@dataclass(frozen=True)
class Replication:
    logs: LogsInfo = field(default_factory=LogsInfo)
    partitions: PartitionsInfo = field(default_factory=PartitionsInfo)


@dataclass(frozen=True)
class ClusterSnapshot:
    """Point-in-time view of the cluster, rebuilt on every render."""
    summary: Summary = field(default_factory=Summary)
    connectivity: Connectivity = field(default_factory=Connectivity)
    nodes: Nodes = field(default_factory=Nodes)
    storage: Storage = field(default_factory=Storage)
    replication: Replication = field(default_factory=Replication)


# Comparator contract: negative, zero or positive like the old cmp().
Comparator = Callable[[Any, Any], int]


@dataclass(frozen=True)
class Header:
    name: str
    comparator: Optional[Comparator] = None


@dataclass(frozen=True)
class Row:
    """A table row: escaped HTML cells plus the raw values comparators see."""
    cells: List[str]
    values: List[Any]


@dataclass(frozen=True)
class TableViewModel:
    name: str
    headers: List[Header]
    rows: List[Row] = field(default_factory=list)
    empty: str = "Nothing to show"
    actions: List[str] = field(default_factory=list)
    title: str = ""


EPHEMERAL = "ephemeral"


def volume_limits(
    volume_type: str,
    size: int = 0,
    iops: Optional[float] = None,
    throughput: Optional[float] = None,
) -> VolumeLimits:
    """Return the IOPS and throughput (MiB/s) ceilings for a volume type."""
    volume_type = (volume_type or "").lower()

    if volume_type == EPHEMERAL:
        return VolumeLimits(iops=600, throughput=150)
    if volume_type == "gp3":
        return VolumeLimits(
            iops=iops if iops else 3000,
            throughput=throughput if throughput else 125,
        )
    if volume_type == "gp2":
        iops_limit = min(size * 3, 16000)
        return VolumeLimits(iops=iops_limit, throughput=max(min(iops_limit / 4, 250), 128))
    if volume_type == "io1":
        iops_limit = iops or 0
        return VolumeLimits(
            iops=iops_limit,
            throughput=max(min(iops_limit / 2000, 500), min(iops_limit / 64000, 1000)),
        )
    if volume_type == "io2":
        iops_limit = iops or 0
        return VolumeLimits(iops=iops_limit, throughput=min(iops_limit / 4, 4000))
    if volume_type == "st1":
        throughput_limit = min(size * 40 / 1000, 500)
        # assumes 1 MiB i/o
        return VolumeLimits(iops=throughput_limit, throughput=throughput_limit)
    if volume_type == "sc1":
        throughput_limit = min(size * 12 / 1000, 192)
        return VolumeLimits(iops=throughput_limit, throughput=throughput_limit)
    return VolumeLimits()
