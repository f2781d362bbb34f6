"""Tests for the control-plane client and the snapshot aggregator.

Every AWS and control-plane dependency is replaced by an in-memory fake.
"""

import base64
import io
import json
from datetime import datetime, timezone

import pytest
from hypothesis import given, strategies as st, settings

from .aws_client import DESCRIBE_TASKS_BATCH, ECSClient, MetricSeries, UpstreamApiFailure
from .controller import (
    AggregatorConfig,
    SnapshotAggregator,
    classify_task,
    deployment_status,
    parse_stateful_settings,
    task_definition_family,
)
from .ctl_client import (
    ClusterControlClient,
    NodeState,
    RegistryEntry,
    RemoteCommandError,
    RemoteInvocationError,
    Segment,
    parse_generational_id,
    parse_replication_factor,
)
from .model import DELETED, Liveness, NodeRole, StorageState, UNKNOWN
from .tabular import DecodeError, TabularData
from .view_model import build_panel


# =============================================================================
# Control client
# =============================================================================

class FakeLambda:
    """Answers invocations with ``respond(args) -> response``."""

    def __init__(self, respond):
        self.respond = respond
        self.calls = []

    def invoke(self, FunctionName, InvocationType, Payload):
        args = json.loads(Payload)["args"]
        self.calls.append((FunctionName, InvocationType, args))
        return self.respond(args)


def payload(result, double: bool = False):
    body = json.dumps(result)
    if double:
        body = json.dumps(body)
    return {"StatusCode": 200, "Payload": io.BytesIO(body.encode("utf-8"))}


def stdout_client(outputs):
    """Client whose CLI prints ``outputs[key]`` for ``metadata get --key key``."""
    def respond(args):
        key = args[-1]
        return payload({"status": 0, "stdout": outputs[key], "stderr": ""})
    return ClusterControlClient("ctl", client=FakeLambda(respond))


def test_invoke_returns_stdout():
    fake = FakeLambda(lambda args: payload({"status": 0, "stdout": "hello", "stderr": ""}))
    client = ClusterControlClient("ctl", client=fake)

    assert client.invoke(["sql", "SELECT 1"]) == "hello"
    assert fake.calls == [("ctl", "RequestResponse", ["sql", "SELECT 1"])]


def test_invoke_decodes_a_double_encoded_payload():
    fake = FakeLambda(lambda args: payload({"status": 0, "stdout": "hello", "stderr": ""}, double=True))

    assert ClusterControlClient("ctl", client=fake).invoke(["x"]) == "hello"


def test_non_zero_status_raises_command_error():
    fake = FakeLambda(lambda args: payload({"status": 2, "stdout": "", "stderr": "bad"}))

    with pytest.raises(RemoteCommandError) as excinfo:
        ClusterControlClient("ctl", client=fake).invoke(["x"])
    assert excinfo.value.status == 2
    assert excinfo.value.stderr == "bad"


@pytest.mark.parametrize("response", [
    {"FunctionError": "Unhandled", "Payload": io.BytesIO(b'{"errorMessage": "boom"}')},
    {"StatusCode": 200, "Payload": io.BytesIO(b"")},
    {"StatusCode": 200},
])
def test_broken_invocations_raise_invocation_error(response):
    fake = FakeLambda(lambda args: response)

    with pytest.raises(RemoteInvocationError):
        ClusterControlClient("ctl", client=fake).invoke(["x"])


def test_transport_failure_raises_invocation_error():
    def respond(args):
        raise ConnectionError("network down")

    with pytest.raises(RemoteInvocationError):
        ClusterControlClient("ctl", client=FakeLambda(respond)).invoke(["x"])


def test_malformed_metadata_raises_decode_error():
    client = stdout_client({"bifrost_config": "{not json"})

    with pytest.raises(DecodeError):
        client.bifrost_config()


def test_nodes_config():
    config = {"nodes": [
        [1, {"Node": {
            "name": "arn:aws:ecs:us-east-1:123456789012:task/c/abc",
            "current_generation": "N1:3",
            "roles": ["log-server", "worker"],
            "log_server_config": {"storage_state": "read-write"},
        }}],
        [2, "Tombstone"],
    ]}
    entries = stdout_client({"nodes_config": json.dumps(config)}).nodes_config()

    assert entries == [
        RegistryEntry(
            plain_id=1,
            name="arn:aws:ecs:us-east-1:123456789012:task/c/abc",
            generation=(1, 3),
            roles=("log-server", "worker"),
            storage_state="read-write",
        ),
        RegistryEntry(plain_id=2, tombstone=True),
    ]


def test_bifrost_config_picks_tail_segment_and_decodes_params():
    params = {"loglet_id": 12, "sequencer": "N1:3", "replication": {"node": 2}, "nodeset": [1, 2]}
    config = {"logs": [
        [1, {"chain": [[0, {"kind": "local", "params": "{}"}]]}],
        [0, {"chain": [
            [0, {"kind": "local", "params": "{}"}],
            [7, {"kind": "replicated", "params": json.dumps(params)}],
        ]}],
    ]}
    segments = stdout_client({"bifrost_config": json.dumps(config)}).bifrost_config()

    assert segments == [
        Segment(log_id=0, base_lsn=7, kind="replicated", params=params),
        Segment(log_id=1, base_lsn=0, kind="local", params={}),
    ]


def test_partition_table():
    table = {"partitions": [[0, {"placement": ["N2", "N1"]}], [1, {"placement": [1]}]]}

    assert stdout_client({"partition_table": json.dumps(table)}).partition_table() == {0: [2, 1], 1: [1]}


def test_license_org():
    claims = base64.urlsafe_b64encode(json.dumps({"org": "acme"}).encode()).decode().rstrip("=")
    client = stdout_client({"license_key": json.dumps(f"header.{claims}.signature")})

    assert client.license_org() == "acme"


def test_license_without_org_raises():
    claims = base64.urlsafe_b64encode(b'{"sub": "x"}').decode().rstrip("=")
    client = stdout_client({"license_key": f"header.{claims}.signature"})

    with pytest.raises(DecodeError):
        client.license_org()


@pytest.mark.parametrize("value,expected", [
    (3, {"node": 3}),
    ("2", {"node": 2}),
    ("zone: 3", {"zone": 3}),
    ("{node: 3 }", {"node": 3}),
    ({"region": 1, "node": 2}, {"region": 1, "node": 2}),
    (0, None),
    ("node: 0", None),
    ("", None),
    ("three", None),
    (None, None),
])
def test_parse_replication_factor(value, expected):
    assert parse_replication_factor(value) == expected


@settings(max_examples=100)
@given(st.integers(min_value=0, max_value=10 ** 6), st.integers(min_value=0, max_value=10 ** 6))
def test_generational_id_forms_agree(plain, generation):
    expected = (plain, generation)

    assert parse_generational_id(f"N{plain}:{generation}") == expected
    assert parse_generational_id([plain, generation]) == expected
    assert parse_generational_id({"id": plain, "generation": generation}) == expected


# =============================================================================
# Aggregator fakes
# =============================================================================

ACCOUNT = "arn:aws:ecs:us-east-1:123456789012"
STATEFUL_ARN = f"{ACCOUNT}:task/cluster/s1"
STATELESS_ARN = f"{ACCOUNT}:task/cluster/l1"
CONTROLLER_ARN = f"{ACCOUNT}:task/cluster/c1"
GHOST_ARN = f"{ACCOUNT}:task/cluster/ghost"
STATEFUL_TASK_DEFINITION = f"{ACCOUNT}:task-definition/stateful:4"
ZONES = "CONTROLLER_ECS_CLUSTERS__us-east-1__ZONES__"


def _env(**values):
    return [{"name": name, "value": value} for name, value in values.items()]


class FakeECS:
    def __init__(self, fail_services: bool = False, fail_tasks: bool = False):
        self.fail_services = fail_services
        self.fail_tasks = fail_tasks
        self.services = {
            "svc-stateless": {
                "serviceName": "svc-stateless",
                "taskDefinition": "stateless:1",
                "desiredCount": 2, "runningCount": 2, "pendingCount": 0,
                "deployments": [{"status": "PRIMARY", "rolloutState": "COMPLETED"}],
                "loadBalancers": [{"targetGroupArn": "tg-arn"}],
                "networkConfiguration": {"awsvpcConfiguration": {"subnets": ["subnet-1"], "securityGroups": ["sg-1"]}},
            },
            "svc-controller": {
                "serviceName": "svc-controller",
                "taskDefinition": "controller:1",
                "desiredCount": 1, "runningCount": 1, "pendingCount": 0,
                "deployments": [{"status": "PRIMARY", "rolloutState": "COMPLETED"}],
            },
        }
        self.definitions = {
            "stateless:1": {"containerDefinitions": [{
                "name": "restate",
                "environment": _env(RESTATE_DEFAULT_NUM_PARTITIONS="24", RESTATE_DEFAULT_REPLICATION="{node: 2 }"),
                "portMappings": [{"name": "ingress", "containerPort": 8080}],
            }]},
            "controller:1": {"containerDefinitions": [{
                "name": "controller",
                "environment": _env(**{
                    f"{ZONES}us-east-1a__COUNT": "2",
                    f"{ZONES}us-east-1b__COUNT": "1",
                    f"{ZONES}us-east-1a__TASK_DEFINITION_ARN": STATEFUL_TASK_DEFINITION,
                    f"{ZONES}us-east-1a__VOLUME__VOLUME_TYPE": "gp3",
                    f"{ZONES}us-east-1a__VOLUME__SIZE_IN_GIB": "100",
                }),
            }]},
        }
        self.tasks = [
            {
                "taskArn": STATEFUL_ARN, "group": "family:stateful",
                "taskDefinitionArn": STATEFUL_TASK_DEFINITION,
                "availabilityZone": "us-east-1a", "lastStatus": "RUNNING", "desiredStatus": "RUNNING",
                "healthStatus": "HEALTHY",
                "attachments": [{"type": "AmazonElasticBlockStorage", "details": [{"name": "volumeId", "value": "vol-1"}]}],
            },
            {
                "taskArn": STATELESS_ARN, "group": "service:svc-stateless", "startedBy": "ecs-svc/1",
                "availabilityZone": "us-east-1a", "lastStatus": "RUNNING", "desiredStatus": "RUNNING",
            },
            {
                "taskArn": CONTROLLER_ARN, "group": "service:svc-controller", "startedBy": "ecs-svc/2",
                "availabilityZone": "us-east-1b", "lastStatus": "RUNNING", "desiredStatus": "RUNNING",
            },
        ]

    def describe_services(self, cluster, services):
        if self.fail_services:
            raise UpstreamApiFailure("DescribeServices failed")
        return {name: self.services[name] for name in services}

    def describe_task_definition(self, task_definition):
        return self.definitions[task_definition]

    def list_task_arns(self, cluster):
        return [task["taskArn"] for task in self.tasks]

    def describe_tasks(self, cluster, task_arns):
        if self.fail_tasks:
            raise UpstreamApiFailure("DescribeTasks failed")
        return [task for task in self.tasks if task["taskArn"] in task_arns]


class FakeEC2:
    def describe_volumes(self, volume_ids):
        return {
            "vol-1": {"VolumeId": "vol-1", "VolumeType": "gp3", "Size": 100, "Iops": 4000, "Throughput": 250, "State": "in-use"},
        }

    def describe_volume_status(self, volume_ids):
        return {"vol-1": "ok"}


class FakeCloudWatch:
    def __init__(self):
        self.queries = []

    def get_latest_values(self, queries, start_time, end_time):
        self.queries.append([q["Id"] for q in queries])
        return {
            "cpu": {"s1": 50.0},
            "cpures": {"s1": 100.0},
            "ebs": {"s1": 25.0},
            "ebssize": {"s1": 100.0},
            "clustercpu": {"cluster": 42.0},
            "clustermem": {"cluster": 30.0},
            "bucketsize": {"bucket": 2048.0},
            "objects": {"bucket": 3.0},
        }

    def get_metric_data(self, queries, start_time, end_time):
        self.queries.append(queries)
        return {
            "ops0": [MetricSeries(id="ops0", label="vol-1")],
            "iops0": [MetricSeries(id="iops0", label="s1", timestamps=[start_time], values=[12.5])],
        }


PARTITION_HEADERS = [
    "partition_id", "plain_node_id", "gen_node_id", "target_mode", "effective_mode", "replay_status",
    "last_applied_log_lsn", "last_persisted_log_lsn", "last_archived_log_lsn", "target_tail_lsn", "updated_at",
]


class FakeControl:
    def __init__(self, bifrost_fails: bool = False):
        self.bifrost_fails = bifrost_fails

    def nodes_config(self):
        return [
            RegistryEntry(plain_id=1, name=STATEFUL_ARN, generation=(1, 3), roles=("log-server", "worker"),
                          storage_state="read-write"),
            RegistryEntry(plain_id=2, name=STATELESS_ARN, generation=(2, 1), roles=("http-ingress",)),
            RegistryEntry(plain_id=3, name=GHOST_ARN, generation=(3, 1), roles=("log-server",),
                          storage_state="data-loss"),
            RegistryEntry(plain_id=4, tombstone=True),
        ]

    def node_state(self):
        return [NodeState(1, "N1:3", "alive"), NodeState(2, "N2:1", "alive"), NodeState(3, "N3:1", "dead")]

    def bifrost_config(self):
        if self.bifrost_fails:
            raise RemoteCommandError(["metadata", "get", "--key", "bifrost_config"], 1, "", "unavailable")
        return [Segment(log_id=0, base_lsn=1, kind="replicated", params={
            "loglet_id": "0_1", "sequencer": "N1:3", "replication": {"node": 1}, "nodeset": ["N1"],
        })]

    def partition_table(self):
        return {0: [1], 1: [1]}

    def partition_state(self):
        return TabularData(
            headers={name: index for index, name in enumerate(PARTITION_HEADERS)},
            rows=[
                ["0", "1", "N1:3", "Leader", "Leader", "Active", "10", "8", "", "15", "2024-01-01"],
                ["1", "1", "N1:3", "Leader", "Leader", "Active", "5", "5", "", "5", "2024-01-01"],
            ],
        )

    def license_org(self):
        return "acme"


def aggregator(ecs=None, ctl=None, cloudwatch=None, ec2=None):
    config = AggregatorConfig(
        cluster_name="cluster",
        stateless_service="svc-stateless",
        controller_service="svc-controller",
        bucket_name="bucket",
    )
    return SnapshotAggregator(
        ecs=ecs or FakeECS(),
        ec2=ec2 or FakeEC2(),
        cloudwatch=cloudwatch or FakeCloudWatch(),
        ctl=ctl or FakeControl(),
        config=config,
        now=lambda: datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


# =============================================================================
# Aggregator
# =============================================================================

def test_snapshot_nodes_are_classified_and_reconciled():
    snapshot = aggregator().build()
    stateful = {node.task_id: node for node in snapshot.nodes.stateful}

    assert sorted(stateful) == ["ghost", "s1"]
    assert [node.task_id for node in snapshot.nodes.stateless] == ["l1"]
    assert [node.task_id for node in snapshot.nodes.controller] == ["c1"]

    s1 = stateful["s1"]
    assert s1.node_id == "N1:3"
    assert s1.liveness == Liveness.ALIVE
    assert s1.storage_state == StorageState.READ_WRITE
    assert (s1.leader_count, s1.follower_count, s1.nodeset_count) == (2, 0, 1)
    assert s1.usage.cpu == 50.0
    assert s1.usage.storage == 25.0
    assert s1.storage_size == 100
    assert snapshot.nodes.stateless[0].node_id == "N2:1"
    assert snapshot.nodes.controller[0].node_id is None


def test_registry_ghost_appears_once_and_is_not_running():
    snapshot = aggregator().build()
    ghosts = [node for node in snapshot.nodes.all() if node.task_id == "ghost"]

    assert len(ghosts) == 1
    assert ghosts[0].last_status == DELETED
    assert ghosts[0].role == NodeRole.STATEFUL
    assert ghosts[0].liveness == Liveness.DEAD
    assert snapshot.summary.stateful.running == 1
    assert snapshot.summary.stateful.desired == 3


def test_summary_and_connectivity():
    snapshot = aggregator().build()
    summary = snapshot.summary

    assert summary.license_org == "acme"
    assert summary.cpu_utilization == 42.0
    assert summary.deployment_status == "COMPLETED"
    assert summary.default_partitions == 24
    assert summary.partition_replication == {"node": 2}
    assert summary.stateless.running == 2
    assert snapshot.connectivity.target_group_arn == "tg-arn"
    assert snapshot.connectivity.ports == {"ingress": 8080}
    assert snapshot.connectivity.subnet_ids == ("subnet-1",)
    assert snapshot.storage.bucket.size_bytes == 2048.0


def test_volumes_use_described_limits():
    volumes = aggregator().build().storage.volumes

    assert len(volumes) == 1
    assert volumes[0].id == "vol-1"
    assert (volumes[0].limits.iops, volumes[0].limits.throughput) == (4000, 250)
    assert volumes[0].health == "ok"


def test_replication():
    replication = aggregator().build().replication

    assert replication.logs.count == 1
    assert replication.logs.info[0].nodeset == (1,)
    assert replication.partitions.count == 2
    first = replication.partitions.info[0]
    assert first.leader == "N1:3"
    assert first.lag == 5
    assert first.archived_lsn is None


def test_bifrost_failure_yields_empty_logs():
    snapshot = aggregator(ctl=FakeControl(bifrost_fails=True)).build()

    assert snapshot.replication.logs.count == 0
    assert snapshot.replication.logs.info == []
    # the rest of the snapshot is still there
    assert snapshot.replication.partitions.count == 2


def test_service_failure_propagates():
    with pytest.raises(UpstreamApiFailure):
        aggregator(ecs=FakeECS(fail_services=True)).build()


def test_target_group_is_resolved_once():
    agg = aggregator()

    assert agg.target_group_arn({"loadBalancers": [{"targetGroupArn": "first"}]}) == "first"
    assert agg.target_group_arn({"loadBalancers": [{"targetGroupArn": "second"}]}) == "first"


def test_volume_iops_returns_one_series_per_task():
    cloudwatch = FakeCloudWatch()
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    series = aggregator(cloudwatch=cloudwatch).volume_iops("Write", start, start, 60)

    assert [(s.label, s.values) for s in series] == [("s1", [12.5])]
    metric = cloudwatch.queries[-1][0]["MetricStat"]["Metric"]
    assert metric["MetricName"] == "VolumeWriteOps"
    assert metric["Dimensions"] == [{"Name": "VolumeId", "Value": "vol-1"}]


def test_volume_iops_rejects_unknown_direction():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)

    with pytest.raises(ValueError):
        aggregator().volume_iops("Sideways", start, start)


def test_task_failure_propagates():
    with pytest.raises(UpstreamApiFailure):
        aggregator(ecs=FakeECS(fail_tasks=True)).build()


class StaleRegistration(FakeControl):
    """A task that re-registered keeps its earlier registry entry around."""

    def nodes_config(self):
        stale = RegistryEntry(plain_id=0, name=STATEFUL_ARN, generation=(0, 1), roles=("log-server",))
        return [stale] + super().nodes_config()


def test_stale_registration_of_a_described_task_is_not_a_ghost():
    snapshot = aggregator(ctl=StaleRegistration()).build()
    stateful = [node.task_id for node in snapshot.nodes.stateful]

    assert sorted(stateful) == ["ghost", "s1"]
    s1 = next(node for node in snapshot.nodes.stateful if node.task_id == "s1")
    assert s1.last_status == "RUNNING"
    assert s1.node_id == "N1:3"
    assert [node.task_id for node in snapshot.nodes.all() if node.deleted] == ["ghost"]


class UnreachableControl:
    def _fail(self):
        raise RemoteInvocationError("function not found")

    nodes_config = node_state = bifrost_config = _fail
    partition_table = partition_state = license_org = _fail


def test_unreachable_control_plane_degrades_to_task_data():
    snapshot = aggregator(ctl=UnreachableControl()).build()

    assert snapshot.summary.license_org == UNKNOWN
    assert snapshot.replication.partitions.count == 0
    assert snapshot.replication.logs.count == 0
    nodes = snapshot.nodes.all()
    assert sorted(node.task_id for node in nodes) == ["c1", "l1", "s1"]
    assert all(node.node_id is None and node.liveness is None for node in nodes)
    assert not any(node.deleted for node in nodes)

    html = build_panel(snapshot, {}).html
    assert 'id="mainTabs-overview"' in html
    assert "No partitions" in html


class FailingEC2(FakeEC2):
    def describe_volumes(self, volume_ids):
        raise UpstreamApiFailure("DescribeVolumes failed")


def test_volume_describe_failure_keeps_ephemeral_and_configured_volumes():
    ecs = FakeECS()
    ecs.tasks.append({
        "taskArn": f"{ACCOUNT}:task/cluster/s2", "group": "family:stateful",
        "taskDefinitionArn": STATEFUL_TASK_DEFINITION,
        "availabilityZone": "us-east-1b", "lastStatus": "RUNNING", "desiredStatus": "RUNNING",
        "ephemeralStorage": {"sizeInGiB": 50},
    })
    snapshot = aggregator(ecs=ecs, ec2=FailingEC2()).build()
    volumes = {volume.id: volume for volume in snapshot.storage.volumes}

    assert sorted(volumes) == ["ephemeral/s2", "vol-1"]
    assert volumes["ephemeral/s2"].size == 50
    assert (volumes["vol-1"].type, volumes["vol-1"].size) == ("gp3", 100)
    assert volumes["vol-1"].state == UNKNOWN
    assert volumes["vol-1"].health == "ok"
    s1 = next(node for node in snapshot.nodes.stateful if node.task_id == "s1")
    assert s1.storage_size == 100


# =============================================================================
# ECS client
# =============================================================================

class FakeSession:
    def __init__(self, client):
        self.client_ = client

    def client(self, name):
        return self.client_


class FakePaginator:
    def __init__(self, pages):
        self.pages = pages

    def paginate(self, cluster, desiredStatus):
        return iter(self.pages[desiredStatus])


class FakeECSApi:
    def __init__(self, pages=None, failures=None):
        self.pages = pages or {}
        self.failures = failures or {}
        self.batches = []

    def get_paginator(self, name):
        assert name == "list_tasks"
        return FakePaginator(self.pages)

    def describe_tasks(self, cluster, tasks):
        self.batches.append(list(tasks))
        return {
            "tasks": [{"taskArn": arn} for arn in tasks if arn not in self.failures],
            "failures": [{"arn": arn, "reason": self.failures[arn]} for arn in tasks if arn in self.failures],
        }


def test_list_task_arns_drains_running_and_stopped_pages():
    api = FakeECSApi(pages={
        "RUNNING": [{"taskArns": ["a", "b"]}, {"taskArns": ["c"]}],
        "STOPPED": [{"taskArns": ["c", "d"]}, {}, {"taskArns": ["e"]}],
    })

    assert ECSClient(session=FakeSession(api)).list_task_arns("cluster") == ["a", "b", "c", "d", "e"]


def test_describe_tasks_batches_and_skips_missing_tasks():
    arns = [f"task-{i}" for i in range(200)]
    api = FakeECSApi(failures={"task-3": "MISSING", "task-150": "MISSING"})

    tasks = ECSClient(session=FakeSession(api)).describe_tasks("cluster", arns)

    assert [len(batch) for batch in api.batches] == [DESCRIBE_TASKS_BATCH, DESCRIBE_TASKS_BATCH, 10]
    assert len(tasks) == 198
    assert "task-3" not in [task["taskArn"] for task in tasks]


def test_describe_tasks_raises_on_other_failures():
    api = FakeECSApi(failures={"task-1": "ACCESS_DENIED"})

    with pytest.raises(UpstreamApiFailure):
        ECSClient(session=FakeSession(api)).describe_tasks("cluster", ["task-0", "task-1"])


# =============================================================================
# Classification and settings
# =============================================================================

@pytest.mark.parametrize("task,expected", [
    ({"group": "service:svc-stateless"}, NodeRole.STATELESS),
    ({"group": "service:svc-controller"}, NodeRole.CONTROLLER),
    ({"group": "service:other"}, None),
    ({"group": "family:x", "startedBy": "ecs-svc/123"}, None),
    ({"group": "family:stateful", "taskDefinitionArn": STATEFUL_TASK_DEFINITION}, NodeRole.STATEFUL),
    ({"group": "family:other", "taskDefinitionArn": f"{ACCOUNT}:task-definition/other:1"}, None),
])
def test_classify_task(task, expected):
    assert classify_task(task, "svc-stateless", "svc-controller", "stateful") == expected


def test_parse_stateful_settings_sums_zone_counts():
    settings_ = parse_stateful_settings({
        f"{ZONES}us-east-1a__COUNT": "2",
        f"{ZONES}us-east-1b__COUNT": "3",
        f"{ZONES}us-east-1a__VOLUME__IOPS": "6000",
        "UNRELATED": "1",
    })

    assert settings_.desired_count == 5
    assert settings_.volume_iops == 6000
    assert settings_.task_definition_arn is None


def test_task_definition_family():
    assert task_definition_family(STATEFUL_TASK_DEFINITION) == "stateful"
    assert task_definition_family(None) is None


def test_deployment_status_reports_rollouts_in_progress():
    services = {
        "stateless": {"deployments": [{"status": "PRIMARY", "rolloutState": "IN_PROGRESS"}]},
        "controller": {"deployments": [{"status": "PRIMARY", "rolloutState": "COMPLETED"}]},
    }

    assert deployment_status(services) == "IN_PROGRESS (stateless)"
    assert deployment_status({}) == "Unknown"
