"""Map PuppetDB nodes to Prometheus file_sd static configs."""

from typing import Iterable
from urllib.parse import SplitResult, urlsplit

import yaml
from pydantic import BaseModel

from prometheus_puppetdb.puppetdb import Node


class MappingError(Exception):
    """Raised when an exporter URL cannot be turned into a target."""


class RenderError(Exception):
    """Raised when static configs cannot be serialized."""


class StaticConfig(BaseModel):
    """One file_sd entry: a single target and its labels."""

    targets: list[str]
    labels: dict[str, str]

    @property
    def target(self) -> str:
        return self.targets[0]


def parse_exporter_url(url: str) -> SplitResult:
    """Split an exporter URL, rejecting ones without scheme or host.

    Raises:
        MappingError: If the URL is malformed
    """
    try:
        parts = urlsplit(url)
        # Accessing port validates it
        parts.port
    except ValueError as e:
        raise MappingError(f"Invalid exporter URL {url!r}: {e}") from e

    if not parts.scheme:
        raise MappingError(f"Invalid exporter URL {url!r}: missing scheme")
    if not parts.hostname:
        raise MappingError(f"Invalid exporter URL {url!r}: missing host")
    return parts


def map_targets(nodes: Iterable[Node]) -> list[StaticConfig]:
    """Flatten nodes into one static config per exporter.

    Args:
        nodes: Nodes fetched from PuppetDB

    Returns:
        Static configs, one per (node, exporter) pair

    Raises:
        MappingError: If any exporter URL is malformed. Nothing is returned
            for the other nodes in that case.
    """
    static_configs = []

    for node in nodes:
        for job, url in node.exporters.items():
            parts = parse_exporter_url(url)
            # host[:port] without user info
            host = parts.netloc.rpartition("@")[2]
            static_configs.append(StaticConfig(
                targets=[host],
                labels={
                    "certname": node.certname,
                    "host": node.certname,
                    "job": job,
                    "metrics_path": parts.path,
                    "scheme": parts.scheme,
                },
            ))

    return static_configs


def render_targets(static_configs: Iterable[StaticConfig]) -> str:
    """Serialize static configs to a file_sd YAML document.

    Raises:
        RenderError: If serialization fails
    """
    data = [
        {"targets": list(c.targets), "labels": dict(sorted(c.labels.items()))}
        for c in static_configs
    ]
    try:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    except yaml.YAMLError as e:
        raise RenderError(f"Failed to render targets: {e}") from e
