"""CloudWatch custom widget and metric data source entry point."""

import logging
import os
from datetime import datetime, timezone
from html import escape
from typing import Any, Callable, Dict, List, Optional, Tuple

import boto3

from .aws_client import CloudWatchClient, EC2Client, ECSClient, create_session
from .controller import AggregatorConfig, SnapshotAggregator
from .ctl_client import ClusterControlClient
from .model import RadioDrivenState
from .view_model import PanelSettings, build_panel
from .widget import render_document

logger = logging.getLogger(__name__)

COMMANDS = ("controlPanel", "list", "echo", "describe")
METRIC_COMMANDS = ("volumeIOPs",)

DOCUMENTATION = """\
## Cluster control panel

Renders the state of the cluster: nodes, volumes, logs and partitions.

```
command: controlPanel
props:
  clusterName: my-cluster
  statelessServiceName: my-cluster-stateless
  controllerServiceName: my-cluster-controller
```

Other commands: `list` (available commands), `echo` (returns `echo`),
`describe` (this text). As a metric data source it serves
`LAMBDA("<function>", "volumeIOPs", "<cluster>", "Read"|"Write")`.
"""


class ValidationError(Exception):
    """The widget event is malformed or names an unknown command."""
    pass


# props key, environment variable
_SETTINGS = {
    'cluster_name': ('clusterName', 'CLUSTER_NAME'),
    'stateless_service': ('statelessServiceName', 'STATELESS_SERVICE_NAME'),
    'controller_service': ('controllerServiceName', 'CONTROLLER_SERVICE_NAME'),
    'stateless_container': ('statelessContainerName', 'STATELESS_CONTAINER_NAME'),
    'controller_container': ('controllerContainerName', 'CONTROLLER_CONTAINER_NAME'),
    'ctl_function': ('restatectlLambdaArn', 'RESTATECTL_LAMBDA_ARN'),
    'bucket_name': ('bucketName', 'BUCKET_NAME'),
    'certificate_arn': ('certificateArn', 'CERTIFICATE_ARN'),
    'target_group_arn': ('targetGroupArn', 'TARGET_GROUP_ARN'),
    'vpc_id': ('vpcId', 'VPC_ID'),
}
_LIST_SETTINGS = {
    'load_balancer_arns': ('loadBalancerArns', 'LOAD_BALANCER_ARNS'),
    'subnet_ids': ('subnetIds', 'SUBNET_IDS'),
    'security_group_ids': ('securityGroupIds', 'SECURITY_GROUP_IDS'),
}
_ADDRESSES = {
    'ingress': ('ingressAddress', 'INGRESS_ADDRESS'),
    'admin': ('adminAddress', 'ADMIN_ADDRESS'),
    'node': ('nodeAddress', 'NODE_ADDRESS'),
}
_REQUIRED = ('cluster_name', 'stateless_service', 'controller_service', 'ctl_function')


def configure_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.getLogger().setLevel(getattr(logging, level, logging.INFO))


def _lookup(props: Dict[str, Any], env: Dict[str, str], key: str, variable: str) -> Any:
    value = props.get(key)
    if value in (None, "", []):
        value = env.get(variable)
    return value


def _as_list(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value)
    raise ValidationError(f"expected a list, got {type(value).__name__}")


def load_settings(props: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> Tuple[AggregatorConfig, str]:
    """Aggregator configuration and control function from props, then the environment.

    Raises:
        ValidationError: if the cluster, its services or the control function are unknown
    """
    env = os.environ if env is None else env
    values = {name: _lookup(props, env, key, variable) for name, (key, variable) in _SETTINGS.items()}
    missing = [_SETTINGS[name][0] for name in _REQUIRED if not values[name]]
    if missing:
        raise ValidationError(f"missing configuration: {', '.join(missing)}")

    addresses = {
        name: str(address)
        for name, (key, variable) in _ADDRESSES.items()
        for address in [_lookup(props, env, key, variable)]
        if address
    }
    config = AggregatorConfig(
        cluster_name=values['cluster_name'],
        stateless_service=values['stateless_service'],
        controller_service=values['controller_service'],
        stateless_container=values['stateless_container'] or "restate",
        controller_container=values['controller_container'] or "controller",
        bucket_name=values['bucket_name'],
        certificate_arn=values['certificate_arn'],
        target_group_arn=values['target_group_arn'],
        vpc_id=values['vpc_id'] or "",
        advertised_addresses=addresses,
        **{name: _as_list(_lookup(props, env, key, variable)) for name, (key, variable) in _LIST_SETTINGS.items()},
    )
    return config, values['ctl_function']


def create_aggregator(
    config: AggregatorConfig,
    ctl_function: str,
    session: Optional[boto3.Session] = None,
) -> SnapshotAggregator:
    """Wire the AWS clients for one invocation."""
    session = session or create_session()
    return SnapshotAggregator(
        ecs=ECSClient(session=session),
        ec2=EC2Client(session=session),
        cloudwatch=CloudWatchClient(session=session),
        ctl=ClusterControlClient(ctl_function, session=session),
        config=config,
    )


def _string_map(value: Any, what: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"{what} must be an object, got {type(value).__name__}")
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in value.items()):
        raise ValidationError(f"{what} must map strings to strings")
    return dict(value)


def checked_radios(event: Dict[str, Any]) -> RadioDrivenState:
    """Radio state echoed by the payload, overridden by the dashboard's live form values."""
    state = _string_map(event.get('checkedRadios'), "checkedRadios")
    forms = (event.get('widgetContext') or {}).get('forms') or {}
    for group, option in (forms.get('all') or {}).items():
        if isinstance(option, str) and option:
            state[group] = option
    return state


def _props(event: Dict[str, Any]) -> Dict[str, Any]:
    props = event.get('props')
    if props is None:
        return {}
    if not isinstance(props, dict):
        raise ValidationError(f"props must be an object, got {type(props).__name__}")
    return props


def control_panel(event: Dict[str, Any], context: Any) -> str:
    props = _props(event)
    state = checked_radios(event)
    config, ctl_function = load_settings(props)

    snapshot = create_aggregator(config, ctl_function).build()
    settings = PanelSettings(
        function_arn=getattr(context, 'invoked_function_arn', None),
        props=props,
        generated_at=datetime.now(timezone.utc),
    )
    return render_document(build_panel(snapshot, state, settings))


def _epoch(value: Any, what: str) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise ValidationError(f"{what} must be epoch seconds, got {value!r}") from e


def volume_iops(event: Dict[str, Any]) -> Dict[str, Any]:
    """Serve ``LAMBDA(fn, "volumeIOPs", cluster, "Read"|"Write")`` metric expressions."""
    request = event.get('GetMetricDataRequest') or {}
    arguments: List[str] = request.get('Arguments') or []
    if len(arguments) != 3 or arguments[2] not in ('Read', 'Write'):
        raise ValidationError('expected arguments: "volumeIOPs", <cluster>, "Read"|"Write"')
    start_time = _epoch(request.get('StartTime'), "StartTime")
    end_time = _epoch(request.get('EndTime'), "EndTime")
    try:
        period = int(request.get('Period') or 60)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Period must be an integer, got {request.get('Period')!r}") from e

    config, ctl_function = load_settings({'clusterName': arguments[1]})
    aggregator = create_aggregator(config, ctl_function)
    series = aggregator.volume_iops(arguments[2], start_time, end_time, period)
    return {
        'MetricDataResults': [
            {
                'StatusCode': 'Complete',
                'Label': entry.label,
                'Timestamps': [int(ts.timestamp()) for ts in entry.timestamps],
                'Values': entry.values,
            }
            for entry in series
        ],
    }


def _metric_command(event: Dict[str, Any]) -> str:
    arguments = (event.get('GetMetricDataRequest') or {}).get('Arguments') or []
    return arguments[0] if arguments else ""


def dispatch(event: Dict[str, Any], context: Any) -> Any:
    """Route an event to its command.

    Raises:
        ValidationError: for unknown commands and malformed payloads
    """
    if not isinstance(event, dict):
        raise ValidationError("event must be an object")

    event_type = event.get('EventType')
    if event_type == 'DescribeGetMetricData':
        return {'Description': DOCUMENTATION}
    if event_type == 'GetMetricData':
        command = _metric_command(event)
        if command != 'volumeIOPs':
            raise ValidationError(f"unknown metric command: {command!r}")
        return volume_iops(event)

    if event.get('describe'):
        return DOCUMENTATION

    command = event.get('command', 'controlPanel')
    commands: Dict[str, Callable[[], Any]] = {
        'controlPanel': lambda: control_panel(event, context),
        'list': lambda: list(COMMANDS + METRIC_COMMANDS),
        'echo': lambda: event.get('echo'),
        'describe': lambda: DOCUMENTATION,
    }
    if command not in commands:
        raise ValidationError(f"unknown command: {command!r}")
    return commands[command]()


def handler(event: Dict[str, Any], context: Any) -> Any:
    """Lambda entry point."""
    configure_logging()
    try:
        return dispatch(event, context)
    except ValidationError as e:
        logger.warning(f"Rejected widget event: {e}")
        if isinstance(event, dict) and event.get('EventType') == 'GetMetricData':
            return {'Error': {'Code': 'ValidationError', 'Value': str(e)}}
        return f'<div class="bv-error"><b>Invalid request:</b> {escape(str(e))}</div>'
