"""Pytest configuration and fixtures."""

import json
from unittest.mock import MagicMock

import pytest

from prometheus_puppetdb.config import Config
from prometheus_puppetdb.puppetdb import Node


# Sample PuppetDB v4 response for the prometheus_exporters fact
SAMPLE_PUPPETDB_RESPONSE = [
    {
        "certname": "node1",
        "value": {
            "job1": "http://1.2.3.4:9100/metrics",
        },
    },
    {
        "certname": "web1.example.com",
        "value": {
            "node": "http://web1.example.com:9100/metrics",
            "apache": "https://web1.example.com:9117/apache/metrics",
        },
    },
]


@pytest.fixture
def sample_response():
    """Return the sample PuppetDB response."""
    return json.loads(json.dumps(SAMPLE_PUPPETDB_RESPONSE))


@pytest.fixture
def sample_nodes():
    """Return nodes decoded from the sample response."""
    return [Node.model_validate(item) for item in SAMPLE_PUPPETDB_RESPONSE]


@pytest.fixture
def mock_config(tmp_path):
    """Create a config writing to a temporary file."""
    return Config(
        puppetdb_url="http://puppetdb.test:8080",
        output="file",
        file=str(tmp_path / "targets" / "targets.yml"),
        sleep=0.1,
    )


@pytest.fixture
def k8s_api():
    """Return a mocked Kubernetes CoreV1Api."""
    return MagicMock()
