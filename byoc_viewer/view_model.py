"""Maps a ClusterSnapshot to the tables and tabs of the control panel."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from html import escape
from typing import Any, Dict, List, Optional, Tuple

from .ctl_client import format_replication_factor
from .model import (
    UNKNOWN,
    ClusterSnapshot,
    Header,
    Node,
    RadioDrivenState,
    RoleCounts,
    Row,
    TableViewModel,
)
from .ranking import UNKNOWN_LSN, compare_lsn, compare_numbers
from .ui import Style, interpolate_color
from .widget import Fragment, Tab, join, render_key_values, render_table, render_tabs

HTML_STYLE = Style(good="#1d8102", ok="#8a6d00", bad="#d13212")


@dataclass
class PanelSettings:
    """Static configuration the panel needs besides the snapshot."""
    function_arn: Optional[str] = None
    props: Dict[str, Any] = field(default_factory=dict)
    generated_at: Optional[datetime] = None


def text(value: Any) -> str:
    if value is None or value == "":
        return "-"
    return escape(str(value))


def status(value: Optional[str]) -> str:
    if not value:
        return "-"
    return f'<span style="color:{HTML_STYLE.color_for_status(value)}">{escape(value)}</span>'


def bar(percent: Optional[float]) -> str:
    """Inline utilization bar coloured along the green-to-red gradient."""
    if percent is None:
        return "-"
    clamped = max(0.0, min(100.0, percent))
    color = interpolate_color(clamped / 100)
    return (
        f'<span class="bv-bar"><span style="width:{clamped:.0f}%;background:{color}"></span></span>'
        f"{percent:.0f}%"
    )


def timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return escape(value.strftime("%Y-%m-%d %H:%M:%S"))


def human_bytes(size: float) -> str:
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(size) < 1024 or unit == "TiB":
            return f"{size:.1f} {unit}" if unit != "B" else f"{size:.0f} B"
        size /= 1024
    return f"{size:.1f} TiB"


def counts(value: RoleCounts) -> str:
    return escape(f"{value.running} running / {value.pending} pending / {value.desired} desired")


def lsn(value: Optional[int]) -> Tuple[str, Any]:
    """Display text and comparator value of an LSN."""
    if value is None:
        return UNKNOWN_LSN, UNKNOWN_LSN
    return str(value), value


def _epoch(value: Optional[datetime]) -> Optional[float]:
    return value.timestamp() if value is not None else None


def _node_row(node: Node, stateful: bool, cluster_aware: bool) -> Row:
    cells = [text(node.task_id)]
    values: List[Any] = [node.task_id]
    if cluster_aware:
        cells.append(text(node.node_id))
        values.append(node.node_id or "")
    cells.extend([
        text(node.availability_zone),
        status(node.last_status),
        status(node.desired_status),
        status(node.health_status),
    ])
    values.extend([node.availability_zone, node.last_status, node.desired_status, node.health_status])
    if cluster_aware:
        liveness = node.liveness.value if node.liveness else None
        cells.append(status(liveness))
        values.append(liveness or "")
    cells.extend([bar(node.usage.cpu), bar(node.usage.memory)])
    values.extend([node.usage.cpu, node.usage.memory])
    if stateful:
        storage_state = node.storage_state.value if node.storage_state else None
        cells.extend([
            bar(node.usage.storage),
            status(storage_state),
            text(f"{node.storage_size} GiB" if node.storage_size is not None else None),
            str(node.leader_count),
            str(node.follower_count),
            str(node.nodeset_count),
        ])
        values.extend([
            node.usage.storage, storage_state or "", node.storage_size,
            node.leader_count, node.follower_count, node.nodeset_count,
        ])
    cells.append(timestamp(node.started_at))
    values.append(_epoch(node.started_at))
    return Row(cells=cells, values=values)


def node_table(name: str, title: str, nodes: List[Node], stateful: bool = False, cluster_aware: bool = True) -> TableViewModel:
    headers = [Header("Task")]
    if cluster_aware:
        headers.append(Header("Node"))
    headers.extend([Header("AZ"), Header("Status"), Header("Desired"), Header("Health")])
    if cluster_aware:
        headers.append(Header("Liveness"))
    headers.extend([Header("CPU", compare_numbers), Header("Memory", compare_numbers)])
    if stateful:
        headers.extend([
            Header("Storage", compare_numbers),
            Header("Storage state"),
            Header("Size", compare_numbers),
            Header("Leaders", compare_numbers),
            Header("Followers", compare_numbers),
            Header("Nodesets", compare_numbers),
        ])
    headers.append(Header("Started", compare_numbers))
    return TableViewModel(
        name=name,
        title=title,
        headers=headers,
        rows=[_node_row(node, stateful, cluster_aware) for node in nodes],
        empty=f"No {title.lower()}",
    )


def volume_table(snapshot: ClusterSnapshot) -> TableViewModel:
    rows = []
    for vol in snapshot.storage.volumes:
        rows.append(Row(
            cells=[
                text(vol.id), text(vol.task_id), text(vol.type), text(f"{vol.size} GiB"),
                f"{vol.limits.iops:.0f}", f"{vol.limits.throughput:.0f} MiB/s",
                status(vol.state), status(vol.health),
            ],
            values=[
                vol.id, vol.task_id, vol.type, vol.size,
                vol.limits.iops, vol.limits.throughput, vol.state, vol.health,
            ],
        ))
    return TableViewModel(
        name="volumes",
        title="Volumes",
        headers=[
            Header("Volume"), Header("Task"), Header("Type"), Header("Size", compare_numbers),
            Header("IOPS limit", compare_numbers), Header("Throughput limit", compare_numbers),
            Header("State"), Header("Health"),
        ],
        rows=rows,
        empty="No volumes",
    )


def log_table(snapshot: ClusterSnapshot) -> TableViewModel:
    rows = []
    for log in snapshot.replication.logs.info:
        nodeset = ", ".join(f"N{n}" for n in log.nodeset)
        rows.append(Row(
            cells=[
                str(log.id), str(log.base_lsn), text(log.segment), text(log.kind), text(log.sequencer),
                text(format_replication_factor(log.replication)), text(nodeset),
            ],
            values=[
                log.id, log.base_lsn, log.segment, log.kind, log.sequencer or "",
                format_replication_factor(log.replication), nodeset,
            ],
        ))
    return TableViewModel(
        name="logs",
        title=f"Logs ({snapshot.replication.logs.count})",
        headers=[
            Header("Log", compare_numbers), Header("Base LSN", compare_lsn), Header("Segment"),
            Header("Kind"), Header("Sequencer"), Header("Replication"), Header("Nodeset"),
        ],
        rows=rows,
        empty="No logs",
    )


def partition_table(snapshot: ClusterSnapshot) -> TableViewModel:
    rows = []
    for partition in snapshot.replication.partitions.info:
        applied = lsn(partition.applied_lsn)
        persisted = lsn(partition.persisted_lsn)
        archived = lsn(partition.archived_lsn)
        rows.append(Row(
            cells=[
                str(partition.id), text(partition.node_id), status(partition.mode), text(partition.target_mode),
                text(partition.replay_status), text(partition.leader),
                applied[0], persisted[0], archived[0], str(partition.lag), text(partition.updated_at),
            ],
            values=[
                partition.id, partition.node_id, partition.mode, partition.target_mode,
                partition.replay_status, partition.leader or "",
                applied[1], persisted[1], archived[1], partition.lag, partition.updated_at,
            ],
        ))
    return TableViewModel(
        name="partitions",
        title=f"Partitions ({snapshot.replication.partitions.count})",
        headers=[
            Header("Partition", compare_numbers), Header("Node"), Header("Mode"), Header("Target mode"),
            Header("Replay"), Header("Leader"), Header("Applied LSN", compare_lsn),
            Header("Persisted LSN", compare_lsn), Header("Archived LSN", compare_lsn),
            Header("Lag", compare_numbers), Header("Updated"),
        ],
        rows=rows,
        empty="No partitions",
    )


def overview(snapshot: ClusterSnapshot) -> Fragment:
    summary = snapshot.summary
    connectivity = snapshot.connectivity
    certificate = connectivity.certificate

    summary_pairs = [
        ("Cluster", text(summary.cluster_name)),
        ("License", text(summary.license_org)),
        ("Deployment", status(summary.deployment_status)),
        ("CPU", bar(summary.cpu_utilization)),
        ("Memory", bar(summary.memory_utilization)),
        ("Storage", bar(summary.storage_utilization)),
        ("Stateful nodes", counts(summary.stateful)),
        ("Stateless nodes", counts(summary.stateless)),
        ("Controllers", counts(summary.controller)),
        ("Default partitions", text(summary.default_partitions)),
        ("Partition replication", text(format_replication_factor(summary.partition_replication))),
        ("Log replication", text(format_replication_factor(summary.log_replication))),
    ]

    days = certificate.days_to_expiry
    connectivity_pairs = [
        ("Load balancers", text(", ".join(connectivity.load_balancer_arns))),
        ("Target group", text(connectivity.target_group_arn)),
    ]
    connectivity_pairs.extend(
        (f"{name.capitalize()} address", text(address))
        for name, address in sorted(connectivity.advertised_addresses.items())
    )
    connectivity_pairs.extend([
        ("Ports", text(", ".join(f"{name} {port}" for name, port in sorted(connectivity.ports.items())))),
        ("VPC", text(connectivity.vpc_id)),
        ("Subnets", text(", ".join(connectivity.subnet_ids))),
        ("Security groups", text(", ".join(connectivity.security_group_ids))),
        ("Certificate", text(certificate.arn)),
        ("Certificate expiry", text(f"{days:.0f} days" if days is not None else UNKNOWN)),
    ])
    return join(
        render_key_values("Summary", summary_pairs),
        render_key_values("Connectivity", connectivity_pairs),
    )


def refresh_action(settings: PanelSettings) -> List[str]:
    """Button that re-invokes the widget so the checked radios are sent back."""
    if not settings.function_arn:
        return []
    payload = json.dumps({"command": "controlPanel", "props": settings.props}, sort_keys=True)
    return [
        '<a class="btn btn-primary">Refresh</a>'
        f'<cwdb-action action="call" endpoint="{escape(settings.function_arn)}" display="widget">'
        f"{escape(payload, quote=False)}</cwdb-action>"
    ]


def build_tables(snapshot: ClusterSnapshot) -> Dict[str, TableViewModel]:
    return {
        "stateful": node_table("stateful", "Stateful nodes", snapshot.nodes.stateful, stateful=True),
        "stateless": node_table("stateless", "Stateless nodes", snapshot.nodes.stateless),
        "controller": node_table("controller", "Controllers", snapshot.nodes.controller, cluster_aware=False),
        "volumes": volume_table(snapshot),
        "logs": log_table(snapshot),
        "partitions": partition_table(snapshot),
    }


def build_panel(snapshot: ClusterSnapshot, state: RadioDrivenState, settings: Optional[PanelSettings] = None) -> Fragment:
    """Overview, Nodes, Storage and Replication tabs for one snapshot."""
    settings = settings or PanelSettings()
    tables = build_tables(snapshot)
    bucket = snapshot.storage.bucket

    storage = join(
        render_key_values("Object store", [
            ("Bucket", text(bucket.name)),
            ("Size", text(human_bytes(bucket.size_bytes))),
            ("Objects", text(f"{bucket.object_count:.0f}")),
        ]),
        render_table(tables["volumes"], state),
    )

    tabs = [
        Tab("overview", "Overview", overview(snapshot)),
        Tab("nodes", "Nodes", join(
            render_table(tables["stateful"], state),
            render_table(tables["stateless"], state),
            render_table(tables["controller"], state),
        )),
        Tab("storage", "Storage", storage),
        Tab("replication", "Replication", join(
            render_table(tables["logs"], state),
            render_table(tables["partitions"], state),
        )),
    ]
    panel = render_tabs(tabs, state)

    actions = "".join(refresh_action(settings))
    updated = f"Updated {timestamp(settings.generated_at)}" if settings.generated_at else ""
    footer = f'<div class="bv-footer">{updated} {actions}</div>' if (actions or updated) else ""
    return join(panel, Fragment(html=footer))
