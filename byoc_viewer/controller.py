"""Builds a ClusterSnapshot from ECS, EBS, CloudWatch and the control plane."""

import logging
import re
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .aws_client import (
    CloudWatchClient,
    EC2Client,
    ECSClient,
    MetricSeries,
    expression_query,
    metric_stat_query,
)
from .ctl_client import (
    ClusterControlClient,
    NodeState,
    RegistryEntry,
    Segment,
    format_generational_id,
    parse_lsn,
    parse_plain_id,
    parse_replication_factor,
)
from .model import (
    DELETED,
    EPHEMERAL,
    UNKNOWN,
    BucketStats,
    Certificate,
    ClusterSnapshot,
    Connectivity,
    Liveness,
    Log,
    LogsInfo,
    Node,
    NodeRole,
    Nodes,
    Partition,
    PartitionsInfo,
    Replication,
    ResourceUsage,
    RoleCounts,
    Storage,
    StorageState,
    Summary,
    Volume,
    volume_limits,
)
from .tabular import TabularData

logger = logging.getLogger(__name__)

_ZONE_ENV = re.compile(r"^CONTROLLER_ECS_CLUSTERS__(?P<region>.+?)__ZONES__(?P<zone>.+?)__(?P<key>.+)$")
_TASK_ARN = re.compile(r"^arn:aws[a-z-]*:ecs:[^:]+:\d+:task/.+")

CONTAINER_INSIGHTS = 'ECS/ContainerInsights'
PENDING_STATUSES = ('PROVISIONING', 'PENDING', 'ACTIVATING')
STATEFUL_ROLES = ('log-server', 'worker')


@dataclass
class AggregatorConfig:
    """Static configuration of the cluster being inspected."""
    cluster_name: str
    stateless_service: str
    controller_service: str
    stateless_container: str = "restate"
    controller_container: str = "controller"
    bucket_name: Optional[str] = None
    certificate_arn: Optional[str] = None
    load_balancer_arns: Tuple[str, ...] = ()
    target_group_arn: Optional[str] = None
    advertised_addresses: Dict[str, str] = field(default_factory=dict)
    vpc_id: str = ""
    subnet_ids: Tuple[str, ...] = ()
    security_group_ids: Tuple[str, ...] = ()
    # minute metrics are read from [now - 6m, now - 2m] to skip in-flight sums
    minute_window: Tuple[int, int] = (6, 2)
    hourly_window_hours: int = 72
    max_workers: int = 16


@dataclass(frozen=True)
class StatefulSettings:
    """Stateful node settings recovered from the controller's environment."""
    desired_count: int = 0
    task_definition_arn: Optional[str] = None
    volume_type: Optional[str] = None
    volume_size: Optional[int] = None
    volume_iops: Optional[int] = None
    volume_throughput: Optional[int] = None

    @property
    def family(self) -> Optional[str]:
        return task_definition_family(self.task_definition_arn)


def task_definition_family(arn: Optional[str]) -> Optional[str]:
    """``arn:...:task-definition/family:3`` -> ``family``."""
    if not arn:
        return None
    name = arn.rsplit('/', 1)[-1]
    return name.rsplit(':', 1)[0]


def task_id(task_arn: str) -> str:
    return task_arn.rsplit('/', 1)[-1]


def container_environment(task_definition: Dict[str, Any], container_name: str) -> Dict[str, str]:
    """Environment of the named container as a plain dict."""
    for container in task_definition.get('containerDefinitions', []):
        if container.get('name') == container_name:
            return {env['name']: env.get('value', '') for env in container.get('environment', [])}
    return {}


def container_ports(task_definition: Dict[str, Any], container_name: str) -> Dict[str, int]:
    for container in task_definition.get('containerDefinitions', []):
        if container.get('name') == container_name:
            return {
                mapping.get('name', str(mapping['containerPort'])): mapping['containerPort']
                for mapping in container.get('portMappings', [])
                if 'containerPort' in mapping
            }
    return {}


def _int_or_none(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except ValueError:
        return None


def parse_stateful_settings(environment: Dict[str, str]) -> StatefulSettings:
    """Sum the per-zone COUNT entries and pick up the per-zone task settings."""
    desired = 0
    settings: Dict[str, str] = {}
    for name in sorted(environment):
        match = _ZONE_ENV.match(name)
        if not match:
            continue
        key = match.group('key')
        value = environment[name]
        if key == 'COUNT':
            desired += _int_or_none(value) or 0
        else:
            settings.setdefault(key, value)

    return StatefulSettings(
        desired_count=desired,
        task_definition_arn=settings.get('TASK_DEFINITION_ARN'),
        volume_type=settings.get('VOLUME__VOLUME_TYPE'),
        volume_size=_int_or_none(settings.get('VOLUME__SIZE_IN_GIB')),
        volume_iops=_int_or_none(settings.get('VOLUME__IOPS')),
        volume_throughput=_int_or_none(settings.get('VOLUME__THROUGHPUT')),
    )


def classify_task(
    task: Dict[str, Any],
    stateless_service: str,
    controller_service: str,
    stateful_family: Optional[str] = None,
) -> Optional[NodeRole]:
    """Place a task in a role bucket, or None when it is not a cluster task."""
    group = task.get('group', '')
    if group == f"service:{stateless_service}":
        return NodeRole.STATELESS
    if group == f"service:{controller_service}":
        return NodeRole.CONTROLLER
    if group.startswith('service:') or task.get('startedBy', '').startswith('ecs-svc/'):
        return None
    if stateful_family and task_definition_family(task.get('taskDefinitionArn')) != stateful_family:
        return None
    return NodeRole.STATEFUL


def task_volume_id(task: Dict[str, Any]) -> Optional[str]:
    """EBS volume attached to the task, if any."""
    for attachment in task.get('attachments', []):
        if attachment.get('type') != 'AmazonElasticBlockStorage':
            continue
        for detail in attachment.get('details', []):
            if detail.get('name') == 'volumeId':
                return detail.get('value')
    return None


def _percent(used: Optional[float], reserved: Optional[float]) -> Optional[float]:
    if used is None or not reserved:
        return None
    return max(0.0, min(100.0, used / reserved * 100))


def _insights(stat: str, metric: str, cluster: str, group_by: str = 'TaskId') -> str:
    return (
        f'SELECT {stat}({metric}) FROM SCHEMA("{CONTAINER_INSIGHTS}", ClusterName, TaskDefinitionFamily, TaskId) '
        f"WHERE ClusterName = '{cluster}' GROUP BY {group_by}"
    )


def minute_metric_queries(cluster: str) -> List[Dict[str, Any]]:
    """Per-task utilization plus cluster-wide math over the same series."""
    return [
        expression_query('cpu', _insights('AVG', 'CpuUtilized', cluster), period=60),
        expression_query('cpures', _insights('AVG', 'CpuReserved', cluster), period=60),
        expression_query('mem', _insights('AVG', 'MemoryUtilized', cluster), period=60),
        expression_query('memres', _insights('AVG', 'MemoryReserved', cluster), period=60),
        expression_query('eph', _insights('MAX', 'EphemeralStorageUtilized', cluster), period=60),
        expression_query('ephres', _insights('MAX', 'EphemeralStorageReserved', cluster), period=60),
        expression_query('ebs', _insights('MAX', 'EBSFilesystemUtilized', cluster), period=60),
        expression_query('ebssize', _insights('MAX', 'EBSFilesystemSize', cluster), period=60),
        expression_query('clustercpu', '100 * SUM(cpu) / SUM(cpures)', label='cluster'),
        expression_query('clustermem', '100 * SUM(mem) / SUM(memres)', label='cluster'),
    ]


def hourly_metric_queries(bucket_name: Optional[str], certificate_arn: Optional[str]) -> List[Dict[str, Any]]:
    """Slow moving metrics: bucket size and object count, certificate expiry."""
    queries = []
    if bucket_name:
        queries.append(metric_stat_query(
            'bucketsize', 'AWS/S3', 'BucketSizeBytes',
            {'BucketName': bucket_name, 'StorageType': 'StandardStorage'}, 3600, label='bucket',
        ))
        queries.append(metric_stat_query(
            'objects', 'AWS/S3', 'NumberOfObjects',
            {'BucketName': bucket_name, 'StorageType': 'AllStorageTypes'}, 3600, label='bucket',
        ))
    if certificate_arn:
        queries.append(metric_stat_query(
            'certexpiry', 'AWS/CertificateManager', 'DaysToExpiry',
            {'CertificateArn': certificate_arn}, 3600, stat='Minimum', label='certificate',
        ))
    return queries


@dataclass
class _ControlPlane:
    """Everything read from the cluster control CLI, already defaulted."""
    registry: List[RegistryEntry] = field(default_factory=list)
    node_states: List[NodeState] = field(default_factory=list)
    segments: Optional[List[Segment]] = None
    placements: Dict[int, List[int]] = field(default_factory=dict)
    partition_state: TabularData = field(default_factory=TabularData)
    license_org: str = UNKNOWN


class SnapshotAggregator:
    """Fans out to every data source and reconciles the results.

    Clients are passed in and live as long as the aggregator, which is meant to
    serve a single render.
    """

    def __init__(
        self,
        ecs: ECSClient,
        ec2: EC2Client,
        cloudwatch: CloudWatchClient,
        ctl: ClusterControlClient,
        config: AggregatorConfig,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self._ecs = ecs
        self._ec2 = ec2
        self._cw = cloudwatch
        self._ctl = ctl
        self._config = config
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._target_group_arn: Optional[str] = None
        self._target_group_resolved = False

    @staticmethod
    def _guarded(what: str, default: Any, fn: Callable[..., Any], *args: Any) -> Any:
        """Run an optional fetch, logging and defaulting on any failure."""
        try:
            return fn(*args)
        except Exception as e:
            logger.warning(f"Failed to fetch {what}: {e}")
            return default

    def build(self) -> ClusterSnapshot:
        """Fetch everything concurrently and assemble the snapshot.

        Raises:
            UpstreamApiFailure: if the services or tasks cannot be described
        """
        config = self._config
        with ThreadPoolExecutor(max_workers=config.max_workers) as executor:
            def optional(what: str, default: Any, fn: Callable[..., Any], *args: Any) -> Future:
                return executor.submit(self._guarded, what, default, fn, *args)

            services_future = executor.submit(
                self._ecs.describe_services,
                config.cluster_name,
                [config.stateless_service, config.controller_service],
            )
            tasks_future = executor.submit(self._fetch_tasks)
            minute_future = optional("minute metrics", {}, self._fetch_minute_metrics)
            hourly_future = optional("hourly metrics", {}, self._fetch_hourly_metrics)
            registry_future = optional("nodes_config", [], self._ctl.nodes_config)
            node_state_future = optional("node_state", [], self._ctl.node_state)
            segments_future = optional("bifrost_config", None, self._ctl.bifrost_config)
            placements_future = optional("partition_table", {}, self._ctl.partition_table)
            partition_state_future = optional("partition_state", TabularData(), self._ctl.partition_state)
            license_future = optional("license_key", UNKNOWN, self._ctl.license_org)

            services = services_future.result()
            stateless = services[config.stateless_service]
            controller = services[config.controller_service]

            stateless_definition_future = optional(
                "stateless task definition", {},
                self._ecs.describe_task_definition, stateless.get('taskDefinition', ''),
            )
            controller_definition_future = optional(
                "controller task definition", {},
                self._ecs.describe_task_definition, controller.get('taskDefinition', ''),
            )
            controller_env = container_environment(
                controller_definition_future.result(), config.controller_container,
            )
            settings = parse_stateful_settings(controller_env)

            buckets = self._classify(tasks_future.result(), settings)
            volumes_future = optional("volumes", [], self._fetch_volumes, buckets[NodeRole.STATEFUL], settings)

            control_plane = _ControlPlane(
                registry=registry_future.result(),
                node_states=node_state_future.result(),
                segments=segments_future.result(),
                placements=placements_future.result(),
                partition_state=partition_state_future.result(),
                license_org=license_future.result(),
            )
            minute = minute_future.result()
            hourly = hourly_future.result()
            volumes = volumes_future.result()
            stateless_definition = stateless_definition_future.result()

        nodes = self._reconcile(buckets, control_plane, minute, volumes)
        runtime_env = container_environment(stateless_definition, config.stateless_container)

        return ClusterSnapshot(
            summary=self._summary(stateless, controller, settings, nodes, minute, control_plane, runtime_env),
            connectivity=self._connectivity(stateless, stateless_definition, hourly),
            nodes=nodes,
            storage=Storage(
                bucket=BucketStats(
                    name=config.bucket_name or "",
                    size_bytes=hourly.get('bucketsize', {}).get('bucket', 0.0),
                    object_count=hourly.get('objects', {}).get('bucket', 0.0),
                ),
                volumes=volumes,
            ),
            replication=Replication(
                logs=self._logs(control_plane.segments),
                partitions=self._partitions(control_plane),
            ),
        )

    def _fetch_tasks(self) -> List[Dict[str, Any]]:
        task_arns = self._ecs.list_task_arns(self._config.cluster_name)
        return self._ecs.describe_tasks(self._config.cluster_name, task_arns)

    def _classify(self, tasks: List[Dict[str, Any]], settings: StatefulSettings) -> Dict[NodeRole, List[Dict[str, Any]]]:
        buckets: Dict[NodeRole, List[Dict[str, Any]]] = {role: [] for role in NodeRole}
        for task in tasks:
            role = classify_task(
                task, self._config.stateless_service, self._config.controller_service, settings.family,
            )
            if role is not None:
                buckets[role].append(task)
        for role in buckets:
            buckets[role].sort(key=lambda t: (t.get('availabilityZone', ''), t.get('taskArn', '')))
        return buckets

    def _fetch_minute_metrics(self) -> Dict[str, Dict[str, float]]:
        start_back, end_back = self._config.minute_window
        now = self._now()
        return self._cw.get_latest_values(
            minute_metric_queries(self._config.cluster_name),
            now - timedelta(minutes=start_back),
            now - timedelta(minutes=end_back),
        )

    def _fetch_hourly_metrics(self) -> Dict[str, Dict[str, float]]:
        queries = hourly_metric_queries(self._config.bucket_name, self._config.certificate_arn)
        if not queries:
            return {}
        now = self._now()
        return self._cw.get_latest_values(
            queries, now - timedelta(hours=self._config.hourly_window_hours), now,
        )

    def _fetch_volumes(self, stateful_tasks: List[Dict[str, Any]], settings: StatefulSettings) -> List[Volume]:
        """Describe EBS volumes of stateful tasks; ephemeral tasks get a pseudo volume."""
        attached: List[Tuple[str, str]] = []
        volumes: List[Volume] = []
        for task in stateful_tasks:
            tid = task_id(task.get('taskArn', ''))
            volume_id = task_volume_id(task)
            if volume_id:
                attached.append((volume_id, tid))
                continue
            size = task.get('ephemeralStorage', {}).get('sizeInGiB', 0)
            volumes.append(Volume(
                id=f"{EPHEMERAL}/{tid}",
                type=EPHEMERAL,
                size=size,
                limits=volume_limits(EPHEMERAL, size),
                state=task.get('lastStatus', UNKNOWN).lower(),
                health=UNKNOWN,
                task_id=tid,
            ))

        volume_ids = [volume_id for volume_id, _ in attached]
        described = self._guarded("volumes", {}, self._ec2.describe_volumes, volume_ids)
        statuses = self._guarded("volume status", {}, self._ec2.describe_volume_status, volume_ids)

        for volume_id, tid in attached:
            vol = described.get(volume_id, {})
            volume_type = vol.get('VolumeType', settings.volume_type or UNKNOWN)
            size = vol.get('Size', settings.volume_size or 0)
            volumes.append(Volume(
                id=volume_id,
                type=volume_type,
                size=size,
                limits=volume_limits(
                    volume_type, size,
                    vol.get('Iops', settings.volume_iops),
                    vol.get('Throughput', settings.volume_throughput),
                ),
                state=vol.get('State', UNKNOWN),
                health=statuses.get(volume_id, UNKNOWN),
                task_id=tid,
            ))
        return sorted(volumes, key=lambda v: v.task_id)

    def _reconcile(
        self,
        buckets: Dict[NodeRole, List[Dict[str, Any]]],
        control_plane: _ControlPlane,
        minute: Dict[str, Dict[str, float]],
        volumes: List[Volume],
    ) -> Nodes:
        """Join tasks to registry entries and surface registry ghosts."""
        live_entries: Dict[str, List[RegistryEntry]] = {}
        for entry in control_plane.registry:
            if not entry.tombstone and entry.name:
                live_entries.setdefault(entry.name, []).append(entry)
        for entries in live_entries.values():
            # the most recent registration wins the match
            entries.sort(key=lambda e: e.plain_id, reverse=True)

        liveness = {state.plain_id: state for state in control_plane.node_states}
        leaders: Counter = Counter()
        followers: Counter = Counter()
        for placement in control_plane.placements.values():
            if placement:
                leaders[placement[0]] += 1
                followers.update(placement[1:])
        nodesets: Counter = Counter()
        for segment in control_plane.segments or []:
            nodesets.update(
                plain for plain in (parse_plain_id(n) for n in segment.params.get('nodeset', [])) if plain is not None
            )
        sizes = {volume.task_id: volume.size for volume in volumes}
        matched: set = set()

        def usage(tid: str) -> ResourceUsage:
            storage = _percent(minute.get('ebs', {}).get(tid), minute.get('ebssize', {}).get(tid))
            if storage is None:
                storage = _percent(minute.get('eph', {}).get(tid), minute.get('ephres', {}).get(tid))
            return ResourceUsage(
                cpu=_percent(minute.get('cpu', {}).get(tid), minute.get('cpures', {}).get(tid)),
                memory=_percent(minute.get('mem', {}).get(tid), minute.get('memres', {}).get(tid)),
                storage=storage,
            )

        def cluster_fields(entry: Optional[RegistryEntry], role: NodeRole) -> Dict[str, Any]:
            if entry is None:
                return {}
            state = liveness.get(entry.plain_id)
            if entry.generation is not None:
                node_id = format_generational_id(entry.generation)
            elif state is not None and state.node_id:
                node_id = state.node_id
            else:
                node_id = f"N{entry.plain_id}"
            fields = {
                'node_id': node_id,
                'liveness': Liveness.parse(state.status) if state else Liveness.UNKNOWN,
            }
            if role == NodeRole.STATEFUL:
                fields.update(
                    storage_state=StorageState.parse(entry.storage_state),
                    leader_count=leaders[entry.plain_id],
                    follower_count=followers[entry.plain_id],
                    nodeset_count=nodesets[entry.plain_id],
                )
            return fields

        def node_from_task(task: Dict[str, Any], role: NodeRole) -> Node:
            arn = task.get('taskArn', '')
            tid = task_id(arn)
            entry = None
            if role != NodeRole.CONTROLLER:
                for candidate in live_entries.get(arn, []):
                    if candidate.plain_id not in matched:
                        entry = candidate
                        matched.add(candidate.plain_id)
                        break
            extra = cluster_fields(entry, role)
            if role == NodeRole.STATEFUL:
                extra.setdefault('storage_state', StorageState.UNKNOWN)
                extra['storage_size'] = sizes.get(tid)
            return Node(
                role=role,
                task_id=tid,
                task_arn=arn,
                availability_zone=task.get('availabilityZone', ''),
                last_status=task.get('lastStatus', UNKNOWN),
                desired_status=task.get('desiredStatus', UNKNOWN),
                health_status=task.get('healthStatus', UNKNOWN),
                usage=usage(tid),
                started_at=task.get('startedAt'),
                **extra,
            )

        nodes = {role: [node_from_task(task, role) for task in buckets[role]] for role in NodeRole}

        # stale registrations of a described task are not ghosts
        known_arns = {task.get('taskArn') for tasks in buckets.values() for task in tasks}
        for entries in live_entries.values():
            for entry in entries:
                if entry.plain_id in matched or entry.name in known_arns or not _TASK_ARN.match(entry.name):
                    continue
                role = NodeRole.STATEFUL if set(entry.roles) & set(STATEFUL_ROLES) else NodeRole.STATELESS
                nodes[role].append(Node(
                    role=role,
                    task_id=task_id(entry.name),
                    task_arn=entry.name,
                    last_status=DELETED,
                    desired_status=DELETED,
                    **cluster_fields(entry, role),
                ))
                matched.add(entry.plain_id)

        return Nodes(
            stateful=nodes[NodeRole.STATEFUL],
            stateless=nodes[NodeRole.STATELESS],
            controller=nodes[NodeRole.CONTROLLER],
        )

    def _summary(
        self,
        stateless: Dict[str, Any],
        controller: Dict[str, Any],
        settings: StatefulSettings,
        nodes: Nodes,
        minute: Dict[str, Dict[str, float]],
        control_plane: _ControlPlane,
        runtime_env: Dict[str, str],
    ) -> Summary:
        def service_counts(service: Dict[str, Any]) -> RoleCounts:
            return RoleCounts(
                desired=service.get('desiredCount', 0),
                pending=service.get('pendingCount', 0),
                running=service.get('runningCount', 0),
            )

        stateful_live = [node for node in nodes.stateful if not node.deleted]
        storage = [node.usage.storage for node in stateful_live if node.usage.storage is not None]

        return Summary(
            cluster_name=self._config.cluster_name,
            license_org=control_plane.license_org,
            cpu_utilization=minute.get('clustercpu', {}).get('cluster', 0.0),
            memory_utilization=minute.get('clustermem', {}).get('cluster', 0.0),
            storage_utilization=sum(storage) / len(storage) if storage else 0.0,
            stateful=RoleCounts(
                desired=settings.desired_count,
                pending=sum(1 for node in stateful_live if node.last_status in PENDING_STATUSES),
                running=sum(1 for node in stateful_live if node.running),
            ),
            stateless=service_counts(stateless),
            controller=service_counts(controller),
            deployment_status=deployment_status({'stateless': stateless, 'controller': controller}),
            default_partitions=_int_or_none(runtime_env.get('RESTATE_DEFAULT_NUM_PARTITIONS')),
            partition_replication=parse_replication_factor(runtime_env.get('RESTATE_DEFAULT_REPLICATION')),
            log_replication=parse_replication_factor(
                runtime_env.get('RESTATE_BIFROST__REPLICATED_LOGLET__DEFAULT_LOG_REPLICATION')
            ),
        )

    def target_group_arn(self, stateless: Dict[str, Any]) -> Optional[str]:
        """Configured target group, else the stateless service's first one; resolved once."""
        if not self._target_group_resolved:
            arn = self._config.target_group_arn
            if not arn:
                load_balancers = stateless.get('loadBalancers', [])
                arn = load_balancers[0].get('targetGroupArn') if load_balancers else None
            self._target_group_arn = arn
            self._target_group_resolved = True
        return self._target_group_arn

    def _connectivity(
        self,
        stateless: Dict[str, Any],
        stateless_definition: Dict[str, Any],
        hourly: Dict[str, Dict[str, float]],
    ) -> Connectivity:
        config = self._config
        network = stateless.get('networkConfiguration', {}).get('awsvpcConfiguration', {})
        return Connectivity(
            load_balancer_arns=tuple(config.load_balancer_arns),
            target_group_arn=self.target_group_arn(stateless),
            advertised_addresses=dict(config.advertised_addresses),
            vpc_id=config.vpc_id,
            subnet_ids=tuple(config.subnet_ids or network.get('subnets', [])),
            security_group_ids=tuple(config.security_group_ids or network.get('securityGroups', [])),
            ports=container_ports(stateless_definition, config.stateless_container),
            certificate=Certificate(
                arn=config.certificate_arn or "",
                days_to_expiry=hourly.get('certexpiry', {}).get('certificate'),
            ),
        )

    @staticmethod
    def _logs(segments: Optional[List[Segment]]) -> LogsInfo:
        if segments is None:
            return LogsInfo(count=0, info=[])
        logs = []
        for segment in segments:
            params = segment.params
            nodeset = (parse_plain_id(n) for n in params.get('nodeset', []))
            logs.append(Log(
                id=segment.log_id,
                base_lsn=segment.base_lsn,
                segment=str(params.get('loglet_id', '')),
                kind=segment.kind,
                sequencer=params.get('sequencer'),
                replication=parse_replication_factor(params.get('replication')),
                nodeset=tuple(n for n in nodeset if n is not None),
            ))
        return LogsInfo(count=len(logs), info=logs)

    @staticmethod
    def _partitions(control_plane: _ControlPlane) -> PartitionsInfo:
        table = control_plane.partition_state
        rows = []
        leaders: Dict[int, str] = {}
        for row in table.rows:
            partition_id = parse_plain_id(table.column(row, 'partition_id'))
            if partition_id is None:
                continue
            plain = table.column(row, 'plain_node_id', '')
            node_id = table.column(row, 'gen_node_id') or (f"N{plain}" if plain else UNKNOWN)
            mode = table.column(row, 'effective_mode', UNKNOWN)
            if mode.lower() == 'leader':
                leaders.setdefault(partition_id, node_id)
            rows.append((partition_id, node_id, mode, row))

        partitions = []
        for partition_id, node_id, mode, row in rows:
            placement = control_plane.placements.get(partition_id)
            leader = leaders.get(partition_id) or (f"N{placement[0]}" if placement else None)
            partitions.append(Partition(
                id=partition_id,
                node_id=node_id,
                mode=mode,
                target_mode=table.column(row, 'target_mode', UNKNOWN),
                replay_status=table.column(row, 'replay_status', UNKNOWN),
                leader=leader,
                applied_lsn=parse_lsn(table.column(row, 'last_applied_log_lsn')),
                persisted_lsn=parse_lsn(table.column(row, 'last_persisted_log_lsn')),
                archived_lsn=parse_lsn(table.column(row, 'last_archived_log_lsn')),
                target_tail_lsn=parse_lsn(table.column(row, 'target_tail_lsn')),
                updated_at=table.column(row, 'updated_at', ''),
            ))
        return PartitionsInfo(count=len({p.id for p in partitions}), info=partitions)

    def volume_iops(self, direction: str, start_time: datetime, end_time: datetime, period: int = 60) -> List[MetricSeries]:
        """Read or write IOPS of every stateful EBS volume, one series per task."""
        if direction not in ('Read', 'Write'):
            raise ValueError(f"direction must be Read or Write, not {direction!r}")

        tasks = self._fetch_tasks()
        queries = []
        for i, task in enumerate(t for t in tasks if classify_task(
            t, self._config.stateless_service, self._config.controller_service,
        ) == NodeRole.STATEFUL and t.get('lastStatus') == 'RUNNING'):
            volume_id = task_volume_id(task)
            if not volume_id:
                continue
            queries.append(metric_stat_query(
                f'ops{i}', 'AWS/EBS', f'Volume{direction}Ops', {'VolumeId': volume_id},
                period, stat='Sum', return_data=False,
            ))
            queries.append(expression_query(
                f'iops{i}', f'ops{i} / PERIOD(ops{i})', label=task_id(task.get('taskArn', '')),
            ))

        results = self._cw.get_metric_data(queries, start_time, end_time)
        return [entry for query_id, entries in sorted(results.items()) if query_id.startswith('iops') for entry in entries]


def deployment_status(services: Dict[str, Dict[str, Any]]) -> str:
    """Rollout state of the primary deployments, COMPLETED when all are done."""
    states = []
    for name, service in services.items():
        primary = next((d for d in service.get('deployments', []) if d.get('status') == 'PRIMARY'), None)
        if primary is None:
            continue
        state = primary.get('rolloutState', UNKNOWN)
        if state != 'COMPLETED':
            states.append(f"{state} ({name})")
    if states:
        return ", ".join(states)
    return 'COMPLETED' if any(s.get('deployments') for s in services.values()) else UNKNOWN
