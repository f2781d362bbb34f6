"""Terminal rendering of a cluster snapshot using Rich."""

from typing import List, Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .ctl_client import format_replication_factor
from .model import ClusterSnapshot, Node, RoleCounts, Volume


def interpolate_color(position: float) -> str:
    """Interpolate RGB color for smooth gradient from green -> yellow -> orange -> red.

    Args:
        position: Value from 0.0 to 1.0 representing position in gradient

    Returns:
        Hex color string like '#rrggbb'
    """
    position = max(0.0, min(1.0, position))

    # 0.0 green, 0.35 yellow-green, 0.5 yellow, 0.7 orange, 1.0 red
    if position <= 0.35:
        t = position / 0.35
        r, g = int(t * 140), 180
    elif position <= 0.5:
        t = (position - 0.35) / 0.15
        r, g = int(140 + t * 80), 180
    elif position <= 0.7:
        t = (position - 0.5) / 0.2
        r, g = int(220 + t * 15), int(180 - t * 60)
    else:
        t = (position - 0.7) / 0.3
        r, g = int(235 - t * 15), int(120 - t * 80)

    r = max(0, min(255, r))
    g = max(0, min(255, g))
    return f"#{r:02x}{g:02x}00"


class Style:
    """Color configuration for utilization and status."""

    def __init__(self, good: str = "green", ok: str = "yellow", bad: str = "red"):
        self.good = good
        self.ok = ok
        self.bad = bad

    @classmethod
    def parse(cls, style_str: str) -> "Style":
        """Parse a comma-separated color string (e.g., 'green,yellow,red')."""
        if not style_str:
            return cls()

        parts = [p.strip() for p in style_str.split(",")]
        if len(parts) >= 3:
            return cls(good=parts[0], ok=parts[1], bad=parts[2])
        elif len(parts) == 2:
            return cls(good=parts[0], ok=parts[1])
        return cls(good=parts[0])

    def color_for_status(self, status: str) -> str:
        status = (status or "").lower()
        if status in ("running", "healthy", "alive", "ok", "in-use", "read-write", "completed"):
            return self.good
        if status in ("deleted", "dead", "unhealthy", "impaired", "data-loss", "gone", "failed"):
            return self.bad
        return self.ok


def _counts(counts: RoleCounts) -> str:
    return f"{counts.running}/{counts.desired} running, {counts.pending} pending"


class SnapshotUI:
    """Prints a snapshot as a set of Rich tables."""

    def __init__(self, style: Optional[Style] = None, console: Optional[Console] = None):
        self._style = style or Style()
        self._console = console or Console()

    def render_progress_bar(self, percent: Optional[float], width: int = 12) -> Text:
        """Gradient bar for a 0-100 percentage, or '-' when unknown."""
        if percent is None:
            return Text("-")
        utilization = max(0.0, min(1.0, percent / 100))
        filled = int(utilization * width)

        bar = Text()
        for i in range(filled):
            bar.append("█", style=interpolate_color((i + 1) / width))
        bar.append("░" * (width - filled), style="dim")
        bar.append(f" {percent:.0f}%")
        return bar

    def _status(self, status: str) -> Text:
        return Text(status, style=self._style.color_for_status(status))

    def render_summary(self, snapshot: ClusterSnapshot) -> Panel:
        summary = snapshot.summary
        text = Text()
        text.append(summary.cluster_name or "cluster", style="bold cyan")
        text.append(f" | license: {summary.license_org}")
        text.append(" | deployment: ")
        text.append_text(self._status(summary.deployment_status))
        text.append("\n")
        text.append(f"stateful {_counts(summary.stateful)}")
        text.append(f" | stateless {_counts(summary.stateless)}")
        text.append(f" | controller {_counts(summary.controller)}")
        text.append("\ncpu ")
        text.append_text(self.render_progress_bar(summary.cpu_utilization))
        text.append("  memory ")
        text.append_text(self.render_progress_bar(summary.memory_utilization))
        text.append("  storage ")
        text.append_text(self.render_progress_bar(summary.storage_utilization))
        return Panel(text, border_style="blue")

    def render_nodes(self, title: str, nodes: List[Node], stateful: bool = False) -> Table:
        table = Table(title=title, show_header=True, header_style="bold", border_style="dim", expand=True)
        table.add_column("Task", style="cyan", no_wrap=True)
        table.add_column("Node")
        table.add_column("AZ")
        table.add_column("Status")
        table.add_column("Health")
        table.add_column("Liveness")
        table.add_column("CPU", width=18)
        table.add_column("Memory", width=18)
        if stateful:
            table.add_column("Storage", width=18)
            table.add_column("State")
            table.add_column("Leaders", justify="right")
            table.add_column("Followers", justify="right")
            table.add_column("Nodesets", justify="right")

        for node in nodes:
            row = [
                node.task_id,
                node.node_id or "-",
                node.availability_zone or "-",
                self._status(node.last_status),
                self._status(node.health_status),
                self._status(node.liveness.value) if node.liveness else Text("-"),
                self.render_progress_bar(node.usage.cpu),
                self.render_progress_bar(node.usage.memory),
            ]
            if stateful:
                row.extend([
                    self.render_progress_bar(node.usage.storage),
                    self._status(node.storage_state.value) if node.storage_state else Text("-"),
                    str(node.leader_count),
                    str(node.follower_count),
                    str(node.nodeset_count),
                ])
            table.add_row(*row)
        return table

    def render_volumes(self, volumes: List[Volume]) -> Table:
        table = Table(title="Volumes", show_header=True, header_style="bold", border_style="dim", expand=True)
        table.add_column("Volume", style="cyan", no_wrap=True)
        table.add_column("Task")
        table.add_column("Type")
        table.add_column("Size (GiB)", justify="right")
        table.add_column("IOPS limit", justify="right")
        table.add_column("MiB/s limit", justify="right")
        table.add_column("State")
        table.add_column("Health")
        for vol in volumes:
            table.add_row(
                vol.id, vol.task_id, vol.type, str(vol.size),
                f"{vol.limits.iops:.0f}", f"{vol.limits.throughput:.0f}",
                self._status(vol.state), self._status(vol.health),
            )
        return table

    def render_replication(self, snapshot: ClusterSnapshot) -> Group:
        logs = Table(title=f"Logs ({snapshot.replication.logs.count})", header_style="bold", border_style="dim", expand=True)
        for column in ("Log", "Base LSN", "Segment", "Sequencer", "Replication", "Nodeset"):
            logs.add_column(column)
        for log in snapshot.replication.logs.info:
            logs.add_row(
                str(log.id), str(log.base_lsn), log.segment, log.sequencer or "-",
                format_replication_factor(log.replication),
                ", ".join(f"N{n}" for n in log.nodeset) or "-",
            )

        partitions = Table(
            title=f"Partitions ({snapshot.replication.partitions.count})",
            header_style="bold", border_style="dim", expand=True,
        )
        for column in ("Partition", "Node", "Mode", "Replay", "Leader", "Applied", "Lag"):
            partitions.add_column(column)
        for partition in snapshot.replication.partitions.info:
            partitions.add_row(
                str(partition.id), partition.node_id, partition.mode, partition.replay_status,
                partition.leader or "-",
                "-" if partition.applied_lsn is None else str(partition.applied_lsn),
                str(partition.lag),
            )
        return Group(logs, partitions)

    def render(self, snapshot: ClusterSnapshot) -> Group:
        """Render the whole snapshot."""
        return Group(
            self.render_summary(snapshot),
            self.render_nodes("Stateful nodes", snapshot.nodes.stateful, stateful=True),
            self.render_nodes("Stateless nodes", snapshot.nodes.stateless),
            self.render_nodes("Controllers", snapshot.nodes.controller),
            self.render_volumes(snapshot.storage.volumes),
            self.render_replication(snapshot),
        )

    def print(self, snapshot: ClusterSnapshot) -> None:
        self._console.print(self.render(snapshot))
