"""Command-line argument parsing for byoc-viewer."""

import argparse
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

CONFIG_FILE = ".byoc-viewer"


@dataclass
class Config:
    """Configuration from CLI args, env vars, and config file."""

    command: str = "snapshot"
    region: Optional[str] = None
    profile: Optional[str] = None
    cluster_name: Optional[str] = None
    stateless_service: Optional[str] = None
    controller_service: Optional[str] = None
    ctl_function: Optional[str] = None
    bucket_name: Optional[str] = None
    certificate_arn: Optional[str] = None
    output: str = "byoc-viewer.html"
    checked: Dict[str, str] = field(default_factory=dict)
    style: str = "green,yellow,red"
    debug: bool = False
    show_version: bool = False


def load_config_file(path: Optional[Path] = None) -> Dict[str, str]:
    """Load ``key = value`` lines from ~/.byoc-viewer."""
    config_path = path or Path.home() / CONFIG_FILE
    config: Dict[str, str] = {}

    if not config_path.exists():
        return config

    try:
        with open(config_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" in line:
                    key, value = line.split("=", 1)
                    key = key.strip().replace("-", "_")
                    config[key] = value.strip()
    except OSError as e:
        logger.warning(f"Could not read {config_path}: {e}")

    return config


def parse_checked(pairs: List[str]) -> Dict[str, str]:
    """Turn ``group=option`` pairs into radio state."""
    checked = {}
    for pair in pairs:
        group, sep, option = pair.partition("=")
        if not sep or not group or not option:
            raise ValueError(f"expected group=option, got {pair!r}")
        checked[group.strip()] = option.strip()
    return checked


def parse_args(args: Optional[list] = None, config_path: Optional[Path] = None) -> Config:
    """Parse command-line arguments with config file and env var fallbacks.

    Precedence: CLI args > env vars > config file > defaults
    """
    # Load config file first (lowest precedence)
    file_config = load_config_file(config_path)

    parser = argparse.ArgumentParser(
        prog="byoc-viewer",
        description="Inspect a cluster deployed on ECS and render its control panel",
    )
    parser.add_argument("-v", "--version", action="store_true", help="Show version and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("-r", "--region", type=str, default=None, help="AWS region (default: from env or config)")
    parser.add_argument("-p", "--profile", type=str, default=None, help="AWS profile name (default: from env or config)")
    parser.add_argument("-c", "--cluster", type=str, default=None, help="ECS cluster name")
    parser.add_argument("--stateless-service", type=str, default=None, help="Stateless ECS service name")
    parser.add_argument("--controller-service", type=str, default=None, help="Controller ECS service name")
    parser.add_argument("--ctl-function", type=str, default=None, help="Cluster control Lambda name or ARN")
    parser.add_argument("--bucket", type=str, default=None, help="Object store bucket name")
    parser.add_argument("--certificate-arn", type=str, default=None, help="Load balancer certificate ARN")
    parser.add_argument("--style", type=str, default=None, help="Color style (comma-separated: good,ok,bad)")

    subcommands = parser.add_subparsers(dest="command")
    subcommands.add_parser("snapshot", help="Print the cluster snapshot as tables (default)")
    render = subcommands.add_parser("render", help="Write the control panel HTML")
    render.add_argument("-o", "--output", type=str, default=None, help="Output file (default: byoc-viewer.html)")
    render.add_argument(
        "--checked",
        action="append",
        default=[],
        metavar="GROUP=OPTION",
        help="Checked radio, e.g. stateful-sort=stateful-sort-2-desc (repeatable)",
    )

    parsed = parser.parse_args(args)

    # Build config with precedence: CLI > env > file > defaults
    def get_value(cli_val, env_var, file_key, default):
        if cli_val is not None:
            return cli_val
        if env_var and os.environ.get(env_var):
            return os.environ[env_var]
        if file_key in file_config:
            return file_config[file_key]
        return default

    region = parsed.region
    if region is None:
        region = os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION") or file_config.get("region")

    config = Config(
        command=parsed.command or "snapshot",
        region=region,
        profile=get_value(parsed.profile, "AWS_PROFILE", "profile", None),
        cluster_name=get_value(parsed.cluster, "CLUSTER_NAME", "cluster_name", None),
        stateless_service=get_value(parsed.stateless_service, "STATELESS_SERVICE_NAME", "stateless_service", None),
        controller_service=get_value(parsed.controller_service, "CONTROLLER_SERVICE_NAME", "controller_service", None),
        ctl_function=get_value(parsed.ctl_function, "RESTATECTL_LAMBDA_ARN", "ctl_function", None),
        bucket_name=get_value(parsed.bucket, "BUCKET_NAME", "bucket_name", None),
        certificate_arn=get_value(parsed.certificate_arn, "CERTIFICATE_ARN", "certificate_arn", None),
        output=get_value(getattr(parsed, "output", None), None, "output", "byoc-viewer.html"),
        style=get_value(parsed.style, None, "style", "green,yellow,red"),
        debug=parsed.debug or file_config.get("debug", "false").lower() == "true",
        show_version=parsed.version,
    )

    try:
        config.checked = parse_checked(getattr(parsed, "checked", []))
    except ValueError as e:
        parser.error(str(e))

    if not config.show_version:
        missing = [
            flag
            for flag, value in (
                ("--cluster", config.cluster_name),
                ("--stateless-service", config.stateless_service),
                ("--controller-service", config.controller_service),
                ("--ctl-function", config.ctl_function),
            )
            if not value
        ]
        if missing:
            parser.error(
                f"Invalid usage: {', '.join(missing)} required.\n"
                f"Set via arguments, environment variables, or config file (~/{CONFIG_FILE})."
            )

    return config
