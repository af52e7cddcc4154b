"""Nexus Repository client for hosted Helm repositories.

Uses the Nexus REST API:

- ``PUT  /repository/<repo>/<file>``                  upload a chart archive
- ``GET  /service/rest/v1/search?repository&name&version`` locate a component
- ``DELETE /service/rest/v1/components/<id>``          delete by identity
- ``GET  /service/rest/v1/repositories``               connectivity check

Connection failures and 5xx responses are transient; authentication and
other 4xx responses are terminal.
"""

from __future__ import annotations

import logging

import httpx

from selsync.config import RegistryConfig
from selsync.errors import RegistryError, TransientNetworkError

logger = logging.getLogger(__name__)


class NexusRegistry:
    """Artifact registry backed by a Nexus hosted Helm repository."""

    def __init__(
        self,
        config: RegistryConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.repository = config.repository
        self._client = httpx.Client(
            base_url=config.url.rstrip("/"),
            auth=(config.username, config.password),
            timeout=config.timeout_seconds,
            transport=transport,
        )

    def __enter__(self) -> "NexusRegistry":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # -- operations ----------------------------------------------------------

    def check_health(self) -> int:
        """Return the HTTP status of the repositories listing."""
        response = self._request("GET", "/service/rest/v1/repositories")
        return response.status_code

    def publish(self, artifact_id: str, version: str, data: bytes) -> None:
        """Upload ``<artifact_id>-<version>.tgz`` to the hosted repository."""
        filename = f"{artifact_id}-{version}.tgz"
        response = self._request(
            "PUT",
            f"/repository/{self.repository}/{filename}",
            content=data,
            headers={"Content-Type": "application/gzip"},
        )
        self._raise_for_status(response, f"upload {filename}")
        logger.info("Uploaded %s to %s", filename, self.repository)

    def search(self, artifact_id: str, version: str) -> str | None:
        """Return the component id for exactly ``artifact_id@version``, or None."""
        response = self._request(
            "GET",
            "/service/rest/v1/search",
            params={"repository": self.repository, "name": artifact_id, "version": version},
        )
        self._raise_for_status(response, f"search {artifact_id}@{version}")
        try:
            items = response.json().get("items") or []
        except ValueError:
            raise RegistryError(f"Registry returned invalid JSON for {artifact_id}@{version}")
        for item in items:
            if item.get("name") == artifact_id and str(item.get("version")) == version and item.get("id"):
                return str(item["id"])
        return None

    def delete(self, component_id: str) -> bool:
        """Delete a component by id. Returns False if it was already gone."""
        response = self._request("DELETE", f"/service/rest/v1/components/{component_id}")
        if response.status_code == 404:
            logger.info("Component %s already removed", component_id)
            return False
        self._raise_for_status(response, f"delete component {component_id}")
        logger.info("Removed component %s (HTTP %d)", component_id, response.status_code)
        return True

    # -- helpers -------------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Registry request timed out: {method} {url}: {e}")
        except httpx.RequestError as e:
            raise TransientNetworkError(
                f"Cannot connect to registry at {self.config.url}: {e}",
                hint="Check that Nexus is running and reachable.",
            )

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        if status in (401, 403):
            raise RegistryError(
                f"Registry refused {action} (HTTP {status})",
                hint="Check the registry username and password.",
            )
        if status >= 500:
            raise TransientNetworkError(f"Registry error during {action} (HTTP {status})")
        raise RegistryError(f"Registry rejected {action} (HTTP {status}): {response.text[:200]}")
