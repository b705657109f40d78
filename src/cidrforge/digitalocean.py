import logging
import os

import httpx

from cidrforge.inventory import InventoryError


API_URL = "https://api.digitalocean.com/v2"
TOKEN_ENV = "DIGITALOCEAN_ACCESS_TOKEN"

logger = logging.getLogger(__name__)


class DigitalOceanError(Exception):
    pass


class DigitalOceanClient:
    """Thin wrapper around the DigitalOcean v2 list endpoints."""

    def __init__(
        self,
        token: str,
        base_url: str = API_URL,
        per_page: int = 100,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not token:
            raise DigitalOceanError("DigitalOcean API token cannot be empty")
        self.per_page = per_page
        self._http = httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self) -> None:
        self._http.close()

    def _get(self, path: str, params: dict) -> dict:
        try:
            response = self._http.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = e.response.text.strip()
            raise DigitalOceanError(
                f"GET {path} failed with status {e.response.status_code}: {message}"
            ) from e
        except httpx.RequestError as e:
            raise DigitalOceanError(f"GET {path} failed: {e}") from e
        try:
            return response.json()
        except ValueError as e:
            raise DigitalOceanError(f"GET {path} returned invalid JSON") from e

    def paginate(self, path: str, key: str):
        """Yield every item under ``key`` across all pages of a list endpoint."""
        page = 1
        while True:
            body = self._get(path, {"page": page, "per_page": self.per_page})
            items = body.get(key) or []
            logger.debug("GET %s page %d returned %d %s", path, page, len(items), key)
            yield from items

            pages = (body.get("links") or {}).get("pages") or {}
            if not pages.get("next"):
                break
            page += 1

    def list_vpc_cidrs(self) -> list[str]:
        return [vpc["ip_range"] for vpc in self.paginate("/vpcs", "vpcs") if vpc.get("ip_range")]

    def list_kubernetes_cidrs(self) -> list[str]:
        cidrs = []
        for cluster in self.paginate("/kubernetes/clusters", "kubernetes_clusters"):
            if cluster.get("cluster_subnet"):
                cidrs.append(cluster["cluster_subnet"])
            if cluster.get("service_subnet"):
                cidrs.append(cluster["service_subnet"])
        return cidrs


def create_client(token: str | None = None, **kwargs) -> DigitalOceanClient:
    """Build a client from ``token`` or $DIGITALOCEAN_ACCESS_TOKEN."""
    token = token or os.environ.get(TOKEN_ENV)
    if not token:
        raise DigitalOceanError(
            f"Unable to create DigitalOcean client: {TOKEN_ENV} is not set"
        )
    return DigitalOceanClient(token, **kwargs)


class DigitalOceanInventory:
    """Blocks used by VPCs and DOKS clusters in a DigitalOcean account."""

    def __init__(self, client: DigitalOceanClient):
        self.client = client

    def list_used_blocks(self) -> list[str]:
        try:
            cidrs = self.client.list_vpc_cidrs()
        except DigitalOceanError as e:
            raise InventoryError(f"failed to get VPC CIDRs: {e}") from e

        try:
            cidrs.extend(self.client.list_kubernetes_cidrs())
        except DigitalOceanError as e:
            raise InventoryError(f"failed to get Kubernetes CIDRs: {e}") from e

        logger.info("Found %d blocks in use in DigitalOcean", len(cidrs))
        return cidrs

    def close(self) -> None:
        self.client.close()
