"""AWS client wrappers for ECS, EC2 (EBS volumes) and CloudWatch."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

# DescribeTasks accepts 100 ARNs, keep a margin.
DESCRIBE_TASKS_BATCH = 95
DESCRIBE_VOLUMES_BATCH = 200
# GetMetricData accepts at most 500 queries per request.
METRIC_QUERIES_BATCH = 500


class UpstreamApiFailure(Exception):
    """Raised when an orchestration, storage or metrics API call fails."""
    pass


def create_session(region: Optional[str] = None, profile: Optional[str] = None) -> boto3.Session:
    """Create a shared boto3 session for all clients."""
    return boto3.Session(profile_name=profile, region_name=region)


def batched(items: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class ECSClient:
    """Wrapper for the ECS API."""

    def __init__(self, region: Optional[str] = None, profile: Optional[str] = None, session: Optional[boto3.Session] = None):
        if session is None:
            session = boto3.Session(profile_name=profile, region_name=region)
        self._client = session.client('ecs')

    def describe_services(self, cluster: str, services: List[str]) -> Dict[str, Dict[str, Any]]:
        """Describe services by name, keyed by service name.

        Raises:
            UpstreamApiFailure: if the call fails or a service is missing
        """
        try:
            response = self._client.describe_services(cluster=cluster, services=services)
        except (ClientError, BotoCoreError) as e:
            raise UpstreamApiFailure(f"DescribeServices failed for {cluster}: {e}") from e

        failures = response.get('failures', [])
        if failures:
            reasons = ", ".join(f"{f.get('arn')}: {f.get('reason')}" for f in failures)
            raise UpstreamApiFailure(f"DescribeServices failed for {cluster}: {reasons}")

        return {service['serviceName']: service for service in response.get('services', [])}

    def describe_task_definition(self, task_definition: str) -> Dict[str, Any]:
        try:
            response = self._client.describe_task_definition(taskDefinition=task_definition)
        except (ClientError, BotoCoreError) as e:
            raise UpstreamApiFailure(f"DescribeTaskDefinition failed for {task_definition}: {e}") from e
        return response.get('taskDefinition', {})

    def list_task_arns(self, cluster: str) -> List[str]:
        """List running and stopped task ARNs, draining pagination."""
        task_arns = []
        paginator = self._client.get_paginator('list_tasks')
        try:
            for desired_status in ('RUNNING', 'STOPPED'):
                for page in paginator.paginate(cluster=cluster, desiredStatus=desired_status):
                    task_arns.extend(page.get('taskArns', []))
        except (ClientError, BotoCoreError) as e:
            raise UpstreamApiFailure(f"ListTasks failed for {cluster}: {e}") from e
        # a task can move from RUNNING to STOPPED between the two listings
        return list(dict.fromkeys(task_arns))

    def describe_tasks(self, cluster: str, task_arns: List[str]) -> List[Dict[str, Any]]:
        """Describe tasks in batches.

        Tasks that disappeared since listing (reason MISSING) are skipped; any
        other failure aborts.
        """
        tasks = []
        for batch in batched(task_arns, DESCRIBE_TASKS_BATCH):
            try:
                response = self._client.describe_tasks(cluster=cluster, tasks=batch)
            except (ClientError, BotoCoreError) as e:
                raise UpstreamApiFailure(f"DescribeTasks failed for {cluster}: {e}") from e

            for failure in response.get('failures', []):
                if failure.get('reason') != 'MISSING':
                    raise UpstreamApiFailure(
                        f"DescribeTasks failed for {failure.get('arn')}: {failure.get('reason')}"
                    )
            tasks.extend(response.get('tasks', []))
        return tasks


class EC2Client:
    """Wrapper for the EC2 volume APIs."""

    def __init__(self, region: Optional[str] = None, profile: Optional[str] = None, session: Optional[boto3.Session] = None):
        if session is None:
            session = boto3.Session(profile_name=profile, region_name=region)
        self._client = session.client('ec2')

    def describe_volumes(self, volume_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """Describe EBS volumes, keyed by volume id."""
        volumes = {}
        if not volume_ids:
            return volumes

        paginator = self._client.get_paginator('describe_volumes')
        try:
            for batch in batched(volume_ids, DESCRIBE_VOLUMES_BATCH):
                for page in paginator.paginate(VolumeIds=batch):
                    for vol in page.get('Volumes', []):
                        volumes[vol['VolumeId']] = vol
        except (ClientError, BotoCoreError) as e:
            raise UpstreamApiFailure(f"DescribeVolumes failed: {e}") from e
        return volumes

    def describe_volume_status(self, volume_ids: List[str]) -> Dict[str, str]:
        """Return the health check status ('ok', 'impaired', ...) per volume id."""
        statuses = {}
        if not volume_ids:
            return statuses

        paginator = self._client.get_paginator('describe_volume_status')
        try:
            for batch in batched(volume_ids, DESCRIBE_VOLUMES_BATCH):
                for page in paginator.paginate(VolumeIds=batch):
                    for status in page.get('VolumeStatuses', []):
                        statuses[status['VolumeId']] = status.get('VolumeStatus', {}).get('Status', 'unknown')
        except (ClientError, BotoCoreError) as e:
            raise UpstreamApiFailure(f"DescribeVolumeStatus failed: {e}") from e
        return statuses


@dataclass
class MetricSeries:
    """One time series returned by GetMetricData."""
    id: str
    label: str
    timestamps: List[datetime] = field(default_factory=list)
    values: List[float] = field(default_factory=list)

    def latest(self) -> Optional[float]:
        """Most recent datapoint, or None when the series is empty."""
        if not self.values:
            return None
        if not self.timestamps:
            return self.values[0]
        _, value = max(zip(self.timestamps, self.values), key=lambda point: point[0])
        return value


class CloudWatchClient:
    """Wrapper for the CloudWatch GetMetricData API."""

    def __init__(self, region: Optional[str] = None, profile: Optional[str] = None, session: Optional[boto3.Session] = None):
        if session is None:
            session = boto3.Session(profile_name=profile, region_name=region)
        self._client = session.client('cloudwatch')

    def get_metric_data(
        self,
        queries: List[Dict[str, Any]],
        start_time: datetime,
        end_time: datetime,
    ) -> Dict[str, List[MetricSeries]]:
        """Run metric queries and group the resulting series by query id.

        Queries may be metric stats, Metrics Insights expressions (which return
        one series per GROUP BY value, labelled with it) or math expressions
        over other query ids.
        """
        series: Dict[Tuple[str, str], MetricSeries] = {}
        if not queries:
            return {}

        paginator = self._client.get_paginator('get_metric_data')
        try:
            for batch in _query_batches(queries):
                for page in paginator.paginate(
                    MetricDataQueries=batch,
                    StartTime=start_time,
                    EndTime=end_time,
                ):
                    for result in page.get('MetricDataResults', []):
                        key = (result.get('Id', ''), result.get('Label', ''))
                        entry = series.setdefault(key, MetricSeries(id=key[0], label=key[1]))
                        entry.timestamps.extend(result.get('Timestamps', []))
                        entry.values.extend(result.get('Values', []))
        except (ClientError, BotoCoreError) as e:
            raise UpstreamApiFailure(f"GetMetricData failed: {e}") from e

        grouped: Dict[str, List[MetricSeries]] = {}
        for entry in series.values():
            grouped.setdefault(entry.id, []).append(entry)
        return grouped

    def get_latest_values(
        self,
        queries: List[Dict[str, Any]],
        start_time: datetime,
        end_time: datetime,
    ) -> Dict[str, Dict[str, float]]:
        """Like get_metric_data but reduced to query id -> label -> latest value."""
        latest: Dict[str, Dict[str, float]] = {}
        for query_id, entries in self.get_metric_data(queries, start_time, end_time).items():
            for entry in entries:
                value = entry.latest()
                if value is not None:
                    latest.setdefault(query_id, {})[entry.label] = value
        return latest


def _query_batches(queries: List[Dict[str, Any]]) -> Iterable[List[Dict[str, Any]]]:
    # math expressions reference sibling ids, so never split a small query set
    if len(queries) <= METRIC_QUERIES_BATCH:
        yield queries
        return
    yield from batched(queries, METRIC_QUERIES_BATCH)


def metric_stat_query(
    query_id: str,
    namespace: str,
    metric_name: str,
    dimensions: Dict[str, str],
    period: int,
    stat: str = 'Average',
    label: Optional[str] = None,
    return_data: bool = True,
) -> Dict[str, Any]:
    query = {
        'Id': query_id,
        'MetricStat': {
            'Metric': {
                'Namespace': namespace,
                'MetricName': metric_name,
                'Dimensions': [{'Name': k, 'Value': v} for k, v in dimensions.items()],
            },
            'Period': period,
            'Stat': stat,
        },
        'ReturnData': return_data,
    }
    if label:
        query['Label'] = label
    return query


def expression_query(
    query_id: str,
    expression: str,
    period: Optional[int] = None,
    label: Optional[str] = None,
    return_data: bool = True,
) -> Dict[str, Any]:
    query = {'Id': query_id, 'Expression': expression, 'ReturnData': return_data}
    if period:
        query['Period'] = period
    if label:
        query['Label'] = label
    return query
