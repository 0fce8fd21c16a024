"""HTTP client for querying PuppetDB."""

import logging
import ssl
from typing import Any, Optional, Union
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from prometheus_puppetdb.config import Config, ConfigError

logger = logging.getLogger(__name__)

QUERY_PATH = "/pdb/query/v4"


class FetchError(Exception):
    """Raised when nodes cannot be fetched from PuppetDB."""


class Node(BaseModel):
    """A monitored node and the exporters it declares."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    certname: str
    exporters: dict[str, str] = Field(default_factory=dict, alias="value")

    @field_validator("exporters", mode="before")
    @classmethod
    def validate_exporters(cls, v: Any) -> Any:
        """A null fact value declares no exporters, like a missing one."""
        return {} if v is None else v


def build_ssl_context(
    cert_file: str,
    key_file: str,
    cacert_file: str,
    skip_verify: bool = False,
) -> ssl.SSLContext:
    """Build the TLS context used to talk to an https PuppetDB.

    Raises:
        ConfigError: If a certificate, key or CA file cannot be loaded
    """
    try:
        context = ssl.create_default_context(cafile=cacert_file)
        context.load_cert_chain(certfile=cert_file, keyfile=key_file)
    except (OSError, ssl.SSLError) as e:
        raise ConfigError(f"Failed to load TLS files: {e}") from e

    if skip_verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    return context


class PuppetDBClient:
    """Run PuppetDB queries over the v4 query API."""

    def __init__(
        self,
        url: str,
        query: str,
        timeout: float = 10,
        verify: Union[ssl.SSLContext, bool] = True,
    ):
        """Initialize the client.

        Args:
            url: PuppetDB base URL (http or https)
            query: PQL query returning certname/value pairs
            timeout: HTTP timeout in seconds
            verify: TLS context for https, or a bool for default verification
        """
        scheme = urlsplit(url).scheme
        if scheme not in ("http", "https"):
            raise ConfigError(f"{scheme or url!r} is not a valid http scheme")

        self.url = url.rstrip("/")
        self.query = query
        self.timeout = timeout
        self.verify = verify
        self._client: Optional[httpx.Client] = None

    @classmethod
    def from_config(cls, config: Config) -> "PuppetDBClient":
        """Create a client, loading TLS material when the URL is https."""
        verify: Union[ssl.SSLContext, bool] = True
        if config.is_https:
            verify = build_ssl_context(
                config.cert_file,
                config.key_file,
                config.cacert_file,
                skip_verify=config.ssl_skip_verify,
            )
        return cls(
            url=config.puppetdb_url,
            query=config.query,
            timeout=config.timeout,
            verify=verify,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.url}{QUERY_PATH}"

    @property
    def client(self) -> httpx.Client:
        """Get HTTP client (lazy initialization)."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout, verify=self.verify)
        return self._client

    def fetch_nodes(self) -> list[Node]:
        """Query PuppetDB for nodes and their exporters.

        Returns:
            Nodes in the order PuppetDB returned them

        Raises:
            FetchError: On transport, HTTP status, JSON or record errors
        """
        try:
            response = self.client.post(
                self.endpoint,
                json={"query": self.query},
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"HTTP error {e.response.status_code} querying {self.endpoint}"
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Request error querying {self.endpoint}: {e}") from e
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {self.endpoint}: {e}") from e

        if not isinstance(data, list):
            raise FetchError(
                f"Unexpected response from {self.endpoint}: expected a list, "
                f"got {type(data).__name__}"
            )

        try:
            nodes = [Node.model_validate(item) for item in data]
        except ValidationError as e:
            raise FetchError(f"Invalid node record from {self.endpoint}: {e}") from e

        logger.debug(f"Fetched {len(nodes)} nodes from {self.endpoint}")
        return nodes

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None
