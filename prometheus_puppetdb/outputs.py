"""Output sinks for rendered scrape targets."""

import hashlib
import logging
import os
import re
import sys
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError as TransportError

from prometheus_puppetdb.config import Config, ConfigError
from prometheus_puppetdb.targets import StaticConfig, render_targets

logger = logging.getLogger(__name__)

CONFIGMAP_KEY = "targets.yml"
ANNOTATION_PREFIX = "prometheus.io"
DEFAULT_PORTS = {"http": 80, "https": 443}
MAX_NAME_LENGTH = 63


class OutputError(Exception):
    """Raised when targets cannot be written to the output."""


def api_error_reason(error: Exception) -> str:
    """Describe a Kubernetes API or transport failure."""
    if isinstance(error, ApiException):
        return str(error.reason)
    return str(error)


class BaseOutput(ABC):
    """Base class for target outputs."""

    # A one-shot output is written once instead of polled
    one_shot = False

    @abstractmethod
    def write(self, static_configs: list[StaticConfig]) -> None:
        """Persist static configs.

        Raises:
            OutputError: If the write fails
        """


class TextOutput(BaseOutput):
    """Output persisting the rendered YAML document."""

    def write(self, static_configs: list[StaticConfig]) -> None:
        self.write_document(render_targets(static_configs))

    @abstractmethod
    def write_document(self, document: str) -> None:
        """Persist a rendered document."""


class StdoutOutput(TextOutput):
    """Print targets to standard output once."""

    one_shot = True

    def __init__(self, stream=None):
        self.stream = stream

    def write_document(self, document: str) -> None:
        stream = self.stream or sys.stdout
        try:
            stream.write(document)
            stream.flush()
        except OSError as e:
            raise OutputError(f"Failed to write targets to stdout: {e}") from e


class FileOutput(TextOutput):
    """Write targets to a file watched by Prometheus file_sd."""

    def __init__(self, path: str):
        self.path = Path(path)

    def write_document(self, document: str) -> None:
        """Replace the target file atomically."""
        try:
            self.path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
        except OSError as e:
            raise OutputError(f"Cannot create directory {self.path.parent}: {e}") from e

        # Write to temp file in same directory, then rename (atomic on POSIX)
        try:
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=".targets_",
                suffix=".tmp"
            )
        except OSError as e:
            raise OutputError(f"Failed to write {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "w") as f:
                f.write(document)
            os.chmod(temp_path, 0o644)
            os.replace(temp_path, self.path)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise OutputError(f"Failed to write {self.path}: {e}") from e

        logger.debug(f"Wrote targets to {self.path}")


def load_kubernetes_api() -> k8s_client.CoreV1Api:
    """Create a CoreV1Api from the in-cluster or local kube configuration.

    Raises:
        ConfigError: If no Kubernetes configuration can be loaded
    """
    try:
        k8s_config.load_incluster_config()
    except ConfigException:
        try:
            k8s_config.load_kube_config()
        except (ConfigException, OSError) as e:
            raise ConfigError(f"Unable to load Kubernetes configuration: {e}") from e
        logger.debug("Using local kubeconfig")
    return k8s_client.CoreV1Api()


class ConfigMapOutput(TextOutput):
    """Store targets in a Kubernetes ConfigMap."""

    def __init__(
        self,
        namespace: str,
        name: str,
        api: Optional[k8s_client.CoreV1Api] = None,
    ):
        self.namespace = namespace
        self.name = name
        self._api = api
        self._ensured = False

    @property
    def api(self) -> k8s_client.CoreV1Api:
        """Get the Kubernetes API (lazy initialization)."""
        if self._api is None:
            self._api = load_kubernetes_api()
        return self._api

    def _configmap(self, document: str) -> k8s_client.V1ConfigMap:
        return k8s_client.V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=k8s_client.V1ObjectMeta(name=self.name, namespace=self.namespace),
            data={CONFIGMAP_KEY: document},
        )

    def ensure_exists(self) -> None:
        """Create the ConfigMap with an empty document if it is missing."""
        try:
            self.api.read_namespaced_config_map(self.name, self.namespace)
        except (ApiException, TransportError) as e:
            if getattr(e, "status", None) != 404:
                raise OutputError(
                    f"Unable to read ConfigMap {self.namespace}/{self.name}: "
                    f"{api_error_reason(e)}"
                ) from e
            logger.info(f"Creating ConfigMap {self.namespace}/{self.name}")
            try:
                self.api.create_namespaced_config_map(self.namespace, self._configmap(""))
            except (ApiException, TransportError) as e:
                raise OutputError(
                    f"Unable to create ConfigMap {self.namespace}/{self.name}: "
                    f"{api_error_reason(e)}"
                ) from e
        self._ensured = True

    def write_document(self, document: str) -> None:
        if not self._ensured:
            self.ensure_exists()

        try:
            self.api.replace_namespaced_config_map(
                self.name, self.namespace, self._configmap(document)
            )
        except (ApiException, TransportError) as e:
            raise OutputError(
                f"Unable to update ConfigMap {self.namespace}/{self.name}: "
                f"{api_error_reason(e)}"
            ) from e

        logger.debug(f"Updated ConfigMap {self.namespace}/{self.name}")


def service_name(certname: str, job: str) -> str:
    """Derive a stable DNS-1035 Service name for an exporter.

    The readable slug is truncated and suffixed with a hash of the raw
    certname and job so distinct exporters never collide.
    """
    digest = hashlib.sha1(f"{certname}/{job}".encode()).hexdigest()[:8]
    slug = re.sub(r"[^a-z0-9-]+", "-", f"{certname}-{job}".lower()).strip("-")
    if not slug or not slug[0].isalpha():
        slug = f"t-{slug}".rstrip("-")
    slug = slug[:MAX_NAME_LENGTH - len(digest) - 1].rstrip("-")
    return f"{slug}-{digest}"


def label_selector(labels: dict[str, str]) -> str:
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


class ExternalServicesOutput(BaseOutput):
    """Reconcile one ExternalName Service per target."""

    def __init__(
        self,
        namespace: str,
        object_labels: dict[str, str],
        api: Optional[k8s_client.CoreV1Api] = None,
    ):
        if not object_labels:
            raise ConfigError("external-services output requires at least one object label")
        self.namespace = namespace
        self.object_labels = dict(object_labels)
        self._api = api

    @property
    def api(self) -> k8s_client.CoreV1Api:
        """Get the Kubernetes API (lazy initialization)."""
        if self._api is None:
            self._api = load_kubernetes_api()
        return self._api

    def build_service(self, static_config: StaticConfig) -> k8s_client.V1Service:
        """Build the Service describing one target."""
        labels = static_config.labels
        host, _, port = static_config.target.rpartition(":")
        if not host or not port.isdigit():
            # No explicit port: fall back to the scheme default
            host = static_config.target
            port = str(DEFAULT_PORTS.get(labels.get("scheme", ""), 80))
        host = host.strip("[]")

        annotations = {
            f"{ANNOTATION_PREFIX}/scrape": "true",
            f"{ANNOTATION_PREFIX}/scheme": labels.get("scheme", "http"),
            f"{ANNOTATION_PREFIX}/path": labels.get("metrics_path") or "/metrics",
            f"{ANNOTATION_PREFIX}/port": port,
            "prometheus-puppetdb/certname": labels.get("certname", ""),
            "prometheus-puppetdb/job": labels.get("job", ""),
        }

        return k8s_client.V1Service(
            api_version="v1",
            kind="Service",
            metadata=k8s_client.V1ObjectMeta(
                name=service_name(labels.get("certname", ""), labels.get("job", "")),
                namespace=self.namespace,
                labels=dict(self.object_labels),
                annotations=annotations,
            ),
            spec=k8s_client.V1ServiceSpec(
                type="ExternalName",
                external_name=host,
                ports=[k8s_client.V1ServicePort(
                    name="metrics",
                    port=int(port),
                    protocol="TCP",
                )],
            ),
        )

    def _existing_services(self) -> dict[str, k8s_client.V1Service]:
        services = self.api.list_namespaced_service(
            self.namespace, label_selector=label_selector(self.object_labels)
        )
        return {svc.metadata.name: svc for svc in services.items}

    def write(self, static_configs: list[StaticConfig]) -> None:
        desired: dict[str, k8s_client.V1Service] = {}
        for static_config in static_configs:
            service = self.build_service(static_config)
            desired[service.metadata.name] = service

        try:
            existing = self._existing_services()
            for name, service in desired.items():
                current = existing.get(name)
                if current is not None:
                    # Replace carries the resourceVersion it was listed with
                    service.metadata.resource_version = current.metadata.resource_version
                    self.api.replace_namespaced_service(name, self.namespace, service)
                else:
                    logger.info(f"Creating Service {self.namespace}/{name}")
                    self.api.create_namespaced_service(self.namespace, service)
            for name in sorted(existing.keys() - desired.keys()):
                logger.info(f"Deleting Service {self.namespace}/{name}")
                self.api.delete_namespaced_service(name, self.namespace)
        except (ApiException, TransportError) as e:
            raise OutputError(
                f"Unable to reconcile Services in {self.namespace}: {api_error_reason(e)}"
            ) from e

        logger.debug(f"Reconciled {len(desired)} Services in {self.namespace}")


def make_output(config: Config, api: Optional[k8s_client.CoreV1Api] = None) -> BaseOutput:
    """Create the output selected by the configuration.

    Raises:
        ConfigError: If the output name is empty or unknown
    """
    name = config.output
    if name == "stdout":
        return StdoutOutput()
    if name == "file":
        return FileOutput(config.file)
    if name == "configmap":
        return ConfigMapOutput(
            config.namespace, config.configmap, api=api or load_kubernetes_api()
        )
    if name == "external-services":
        return ExternalServicesOutput(
            config.namespace, config.object_labels, api=api or load_kubernetes_api()
        )
    if not name:
        raise ConfigError("no output defined")
    raise ConfigError(f"unknown output: `{name}'")
