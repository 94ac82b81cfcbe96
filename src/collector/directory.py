"""
Sources of the desired endpoint set.

Two implementations of ``DirectoryClient``:
- StatusDirectoryClient: derives endpoints from the network status service
- StaticDirectoryClient: reads a YAML/JSON list of endpoint descriptors

``create_directory_client`` selects one from configuration.
"""

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol

import aiohttp
import yaml
from pydantic import ValidationError

from collector.models import Endpoint
from config.config import DEFAULT_NODE_PORT, DirectoryConfig
from core.errors.exceptions import ConfigurationError, DirectoryError
from core.http.client import fetch_json

logger = logging.getLogger(__name__)

DIRECTORY_TIMEOUT_SECONDS = 30


class DirectoryClient(Protocol):
    """Supplies the endpoints the fleet should be collecting from."""

    async def fetch(self) -> list[Endpoint]:
        """Return the desired endpoint list. Raises DirectoryError."""
        ...


def _records(section: Any) -> Iterable[dict[str, Any]]:
    """Status sections are maps keyed by id; accept plain lists as well."""
    if isinstance(section, dict):
        values = section.values()
    elif isinstance(section, list):
        values = section
    else:
        return []
    return [v for v in values if isinstance(v, dict)]


def normalize_network_status(status: dict[str, Any], node_port: int = DEFAULT_NODE_PORT) -> list[Endpoint]:
    """
    Expand a network status document into one endpoint per (node, chain) and
    (node, service).

    Nodes are the union of committee and standby nodes, deduplicated by IP.

    Example:
        >>> status = {
        ...     "CommitteeNodes": {"a": {"Ip": "10.0.0.1"}},
        ...     "StandByNodes": {},
        ...     "VirtualChains": {"42": {"Id": 42}},
        ...     "Services": {"Boyar": {"Name": "Boyar", "ServiceUrlName": "boyar"}},
        ... }
        >>> [e.target_url for e in normalize_network_status(status)]
        ['http://10.0.0.1:8666/logs/chain-42', 'http://10.0.0.1:8666/logs/boyar']
    """
    if not isinstance(status, dict):
        raise DirectoryError(f"Unexpected status payload of type {type(status).__name__}")

    ips: list[str] = []
    for node in [*_records(status.get("CommitteeNodes")), *_records(status.get("StandByNodes"))]:
        ip = node.get("Ip")
        if ip and ip not in ips:
            ips.append(ip)

    endpoints: list[Endpoint] = []
    try:
        for chain in _records(status.get("VirtualChains")):
            chain_id = chain["Id"]
            for ip in ips:
                endpoints.append(
                    Endpoint(
                        target_url=f"http://{ip}:{node_port}/logs/chain-{chain_id}",
                        service_name=f"chain-{chain_id}",
                        source_identifier=ip,
                    )
                )

        for service in _records(status.get("Services")):
            for ip in ips:
                endpoints.append(
                    Endpoint(
                        target_url=f"http://{ip}:{node_port}/logs/{service['ServiceUrlName']}",
                        service_name=f"service-{service['Name']}",
                        source_identifier=ip,
                    )
                )
    except (KeyError, ValidationError) as e:
        raise DirectoryError(f"Malformed network status: {e}", cause=e) from e

    return endpoints


class StatusDirectoryClient:
    """Reads the network status service (``GET status_url``)."""

    def __init__(
        self,
        status_url: str,
        node_port: int = DEFAULT_NODE_PORT,
        session: aiohttp.ClientSession | None = None,
        timeout: float = DIRECTORY_TIMEOUT_SECONDS,
    ):
        self.status_url = status_url
        self.node_port = node_port
        self._session = session
        self._timeout = timeout

    async def fetch(self) -> list[Endpoint]:
        logger.info("Querying network status", extra={"http_url": self.status_url})
        if self._session is not None:
            response, error = await fetch_json(self.status_url, self._session, timeout=self._timeout)
        else:
            async with aiohttp.ClientSession() as session:
                response, error = await fetch_json(self.status_url, session, timeout=self._timeout)

        if error:
            raise DirectoryError(
                f"Network status request failed: {error.error_message}",
                context={"http_status": error.status_code, "url": self.status_url},
            )

        endpoints = normalize_network_status(response.data, self.node_port)
        logger.info("Network status loaded", extra={"pods": len(endpoints)})
        return endpoints


class StaticDirectoryClient:
    """
    Reads endpoints from a YAML or JSON file.

    The file holds either a list of descriptors or ``{"endpoints": [...]}``;
    descriptors use the ``targetUrl``/``serviceName``/``sourceIdentifier`` keys.
    The file is re-read on every fetch so edits are picked up at the next
    reconciliation.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def fetch(self) -> list[Endpoint]:
        try:
            text = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        except OSError as e:
            raise DirectoryError(f"Cannot read endpoints file {self.path}: {e}", cause=e) from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise DirectoryError(f"Invalid endpoints file {self.path}: {e}", cause=e) from e

        if isinstance(data, dict):
            data = data.get("endpoints")
        if not isinstance(data, list):
            raise DirectoryError(f"Endpoints file {self.path} must contain a list of endpoints")

        try:
            endpoints = [Endpoint.model_validate(item) for item in data]
        except ValidationError as e:
            raise DirectoryError(f"Invalid endpoint in {self.path}: {e}", cause=e) from e

        logger.info("Endpoints file loaded", extra={"path": str(self.path), "pods": len(endpoints)})
        return endpoints


def create_directory_client(
    config: DirectoryConfig,
    session: aiohttp.ClientSession | None = None,
) -> DirectoryClient:
    """Build the directory client named by ``config.type``."""
    if config.type == "status":
        return StatusDirectoryClient(config.status_url, node_port=config.node_port, session=session)
    if config.type == "static":
        return StaticDirectoryClient(config.endpoints_file)
    raise ConfigurationError(f"Unknown directory type '{config.type}'")


__all__ = [
    "DirectoryClient",
    "StatusDirectoryClient",
    "StaticDirectoryClient",
    "create_directory_client",
    "normalize_network_status",
]
