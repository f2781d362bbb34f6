"""Client for the cluster control CLI, reached through a Lambda function."""

import base64
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import boto3

from .tabular import DecodeError, TabularData, decode_table

logger = logging.getLogger(__name__)

NODE_STATE_QUERY = "SELECT plain_node_id, gen_node_id, status FROM node_state ORDER BY plain_node_id"

PARTITION_STATE_QUERY = (
    "SELECT partition_id, plain_node_id, gen_node_id, target_mode, effective_mode, "
    "replay_status, last_applied_log_lsn, last_persisted_log_lsn, last_archived_log_lsn, "
    "target_tail_lsn, updated_at "
    "FROM partition_state "
    "ORDER BY partition_id ASC, effective_mode DESC, plain_node_id ASC"
)

_GENERATIONAL_ID = re.compile(r"^N(\d+):(\d+)$")
_SCOPED_REPLICATION = re.compile(r"^\s*(\w+)\s*:\s*(\d+)\s*$")


class RemoteInvocationError(Exception):
    """The control function could not be invoked or returned no payload."""
    pass


class RemoteCommandError(Exception):
    """The control CLI exited with a non-zero status."""

    def __init__(self, args: List[str], status: int, stdout: str, stderr: str):
        super().__init__(
            f"{' '.join(args)} exited with status {status}\nstdout: {stdout}\nstderr: {stderr}"
        )
        self.status = status
        self.stdout = stdout
        self.stderr = stderr


def parse_replication_factor(value: Union[str, int, None]) -> Optional[Dict[str, int]]:
    """Turn a replication property into ``{scope: count}``.

    Plain numbers are node-scoped; ``"zone: 3"`` style strings carry their own
    scope. Zero or unparseable values yield None.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return {"node": value} if value > 0 else None
    if isinstance(value, dict):
        parsed = {str(k): int(v) for k, v in value.items() if isinstance(v, int) and v > 0}
        return parsed or None
    if isinstance(value, str):
        # deployment env spells it "{node: 3 }"
        value = value.strip().strip("{}")
        if value.strip().isdigit():
            return parse_replication_factor(int(value))
        match = _SCOPED_REPLICATION.match(value)
        if match and int(match.group(2)) > 0:
            return {match.group(1): int(match.group(2))}
    return None


def format_replication_factor(factor: Optional[Dict[str, int]]) -> str:
    if not factor:
        return "-"
    return ", ".join(f"{scope}: {count}" for scope, count in factor.items())


def parse_generational_id(value: Any) -> Optional[Tuple[int, int]]:
    """Accept ``"N3:7"``, ``[3, 7]`` or ``{"id": 3, "generation": 7}``."""
    if isinstance(value, str):
        match = _GENERATIONAL_ID.match(value.strip())
        if match:
            return int(match.group(1)), int(match.group(2))
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        return int(value[0]), int(value[1])
    elif isinstance(value, dict) and "id" in value and "generation" in value:
        return int(value["id"]), int(value["generation"])
    return None


def format_generational_id(node: Tuple[int, int]) -> str:
    return f"N{node[0]}:{node[1]}"


def parse_plain_id(value: Any) -> Optional[int]:
    """Accept ``3``, ``"3"`` or ``"N3"``."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("N"):
            text = text[1:]
        if text.isdigit():
            return int(text)
    return None


def parse_lsn(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    text = value.strip()
    return int(text) if text.isdigit() else None


@dataclass(frozen=True)
class RegistryEntry:
    """A node registry entry from ``nodes_config``."""
    plain_id: int
    name: str = ""
    generation: Optional[Tuple[int, int]] = None
    roles: Tuple[str, ...] = ()
    storage_state: Optional[str] = None
    tombstone: bool = False


@dataclass(frozen=True)
class NodeState:
    plain_id: int
    node_id: str
    status: str


@dataclass(frozen=True)
class Segment:
    log_id: int
    base_lsn: int
    kind: str
    params: Dict[str, Any] = field(default_factory=dict)


def _decode_json(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"{what} is not valid JSON: {e}") from e


def _entries(value: Any) -> List[Tuple[Any, Any]]:
    """Maps are serialized either as objects or as ``[[key, value], ...]``."""
    if isinstance(value, dict):
        return list(value.items())
    if isinstance(value, list):
        return [(item[0], item[1]) for item in value if isinstance(item, (list, tuple)) and len(item) == 2]
    return []


class ClusterControlClient:
    """Runs the cluster control CLI via a synchronous Lambda invocation."""

    def __init__(self, function_name: str, region: Optional[str] = None, session: Optional[boto3.Session] = None, client=None):
        if client is None:
            if session is None:
                session = boto3.Session(region_name=region)
            client = session.client("lambda")
        self._client = client
        self._function_name = function_name

    def invoke(self, args: List[str]) -> str:
        """Run the CLI with ``args`` and return its stdout."""
        try:
            response = self._client.invoke(
                FunctionName=self._function_name,
                InvocationType="RequestResponse",
                Payload=json.dumps({"args": args}).encode("utf-8"),
            )
        except Exception as e:
            raise RemoteInvocationError(f"Failed to invoke {self._function_name}: {e}") from e

        if response.get("FunctionError"):
            detail = self._read_payload(response) or ""
            raise RemoteInvocationError(
                f"{self._function_name} failed ({response['FunctionError']}): {detail}"
            )

        body = self._read_payload(response)
        if not body:
            raise RemoteInvocationError(f"{self._function_name} returned no payload")

        result = _decode_json(body, "control function result")
        if isinstance(result, str):
            result = _decode_json(result, "control function result")
        if not isinstance(result, dict):
            raise RemoteInvocationError(f"{self._function_name} returned an unexpected payload")

        status = result.get("status")
        stdout = result.get("stdout") or ""
        stderr = result.get("stderr") or ""
        if status != 0:
            raise RemoteCommandError(args, status, stdout, stderr)
        return stdout

    @staticmethod
    def _read_payload(response: Dict[str, Any]) -> Optional[str]:
        payload = response.get("Payload")
        if payload is None:
            return None
        raw = payload.read() if hasattr(payload, "read") else payload
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return raw

    def get_metadata(self, key: str) -> Any:
        """Fetch a metadata key and JSON-decode it."""
        stdout = self.invoke(["metadata", "get", "--key", key])
        return _decode_json(stdout, key)

    def sql(self, query: str) -> TabularData:
        return decode_table(self.invoke(["sql", query]))

    def nodes_config(self) -> List[RegistryEntry]:
        """Return every registry entry, tombstones included."""
        config = self.get_metadata("nodes_config")
        if not isinstance(config, dict):
            raise DecodeError("nodes_config is not an object")

        entries = []
        for plain_id, value in _entries(config.get("nodes")):
            plain = parse_plain_id(plain_id)
            if plain is None:
                continue
            if value == "Tombstone" or (isinstance(value, dict) and "Tombstone" in value):
                entries.append(RegistryEntry(plain_id=plain, tombstone=True))
                continue
            node = value.get("Node", value) if isinstance(value, dict) else None
            if not isinstance(node, dict):
                continue
            log_server = node.get("log_server_config") or {}
            entries.append(RegistryEntry(
                plain_id=plain,
                name=node.get("name", ""),
                generation=parse_generational_id(node.get("current_generation")),
                roles=tuple(node.get("roles", [])),
                storage_state=log_server.get("storage_state"),
            ))
        return entries

    def node_state(self) -> List[NodeState]:
        table = self.sql(NODE_STATE_QUERY)
        states = []
        for row in table.rows:
            plain = parse_plain_id(table.column(row, "plain_node_id"))
            if plain is None:
                continue
            states.append(NodeState(
                plain_id=plain,
                node_id=table.column(row, "gen_node_id", ""),
                status=table.column(row, "status", ""),
            ))
        return states

    def bifrost_config(self) -> List[Segment]:
        """Return the tail segment of every log."""
        config = self.get_metadata("bifrost_config")
        if not isinstance(config, dict):
            raise DecodeError("bifrost_config is not an object")

        segments = []
        for log_id, chain in _entries(config.get("logs")):
            chain_segments = chain.get("chain") if isinstance(chain, dict) else chain
            tail = None
            for base_lsn, segment in _entries(chain_segments):
                if tail is None or int(base_lsn) >= tail[0]:
                    tail = (int(base_lsn), segment)
            if tail is None:
                continue
            base_lsn, segment = tail
            kind = segment.get("kind", "") if isinstance(segment, dict) else ""
            params = segment.get("params", {}) if isinstance(segment, dict) else {}
            # replicated loglet params are serialized as a JSON string
            if isinstance(params, str):
                params = _decode_json(params, f"log {log_id} segment params") if params else {}
            segments.append(Segment(log_id=int(log_id), base_lsn=base_lsn, kind=kind, params=params))
        return sorted(segments, key=lambda s: s.log_id)

    def partition_table(self) -> Dict[int, List[int]]:
        """Return partition id -> placement (plain node ids, leader first)."""
        table = self.get_metadata("partition_table")
        if not isinstance(table, dict):
            raise DecodeError("partition_table is not an object")

        placements = {}
        for partition_id, partition in _entries(table.get("partitions")):
            placement = partition.get("placement", []) if isinstance(partition, dict) else []
            nodes = [parse_plain_id(node) for node in placement]
            placements[int(partition_id)] = [node for node in nodes if node is not None]
        return placements

    def partition_state(self) -> TabularData:
        return self.sql(PARTITION_STATE_QUERY)

    def license_org(self) -> str:
        """Extract the organization from the license claim."""
        stdout = self.invoke(["metadata", "get", "--key", "license_key"]).strip()
        if stdout.startswith('"'):
            stdout = _decode_json(stdout, "license_key")
        parts = stdout.split(".")
        if len(parts) != 3:
            raise DecodeError("license key is not a three part token")
        segment = parts[1] + "=" * (-len(parts[1]) % 4)
        try:
            claims = json.loads(base64.urlsafe_b64decode(segment).decode("utf-8"))
        except ValueError as e:
            raise DecodeError(f"license claims are not valid: {e}") from e
        org = claims.get("org") if isinstance(claims, dict) else None
        if not org:
            raise DecodeError("license claims carry no org")
        return org
