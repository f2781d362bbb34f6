"""Entry point for byoc-viewer."""

import logging
import sys
from datetime import datetime, timezone

from . import __version__
from .aws_client import UpstreamApiFailure, create_session
from .cli import Config, parse_args
from .controller import AggregatorConfig
from .handler import create_aggregator
from .ui import SnapshotUI, Style
from .view_model import PanelSettings, build_panel
from .widget import render_document

logger = logging.getLogger(__name__)


def _aggregator_config(config: Config) -> AggregatorConfig:
    return AggregatorConfig(
        cluster_name=config.cluster_name,
        stateless_service=config.stateless_service,
        controller_service=config.controller_service,
        bucket_name=config.bucket_name,
        certificate_arn=config.certificate_arn,
    )


def main(args=None) -> int:
    """Main entry point."""
    try:
        config = parse_args(args)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1

    if config.show_version:
        print(f"byoc-viewer {__version__}")
        return 0

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        session = create_session(region=config.region, profile=config.profile)
        aggregator = create_aggregator(_aggregator_config(config), config.ctl_function, session=session)
    except Exception as e:
        print(f"Error initializing AWS clients: {e}", file=sys.stderr)
        return 1

    try:
        snapshot = aggregator.build()
    except UpstreamApiFailure as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if config.command == "render":
        settings = PanelSettings(generated_at=datetime.now(timezone.utc))
        document = render_document(build_panel(snapshot, config.checked, settings))
        with open(config.output, "w") as f:
            f.write(document)
        print(f"Wrote {config.output}")
        return 0

    SnapshotUI(style=Style.parse(config.style)).print(snapshot)
    return 0


if __name__ == "__main__":
    sys.exit(main())
