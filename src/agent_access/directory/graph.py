"""
Microsoft Graph Directory Client

Implements the directory contract against Microsoft Graph v1.0.

    GET    /groups/{id}                               -> lookup_group
    GET    /groups?$filter=displayName eq '...'       -> lookup_group (by name)
    GET    /users/{id}/memberOf/microsoft.graph.group -> fetch_memberships
    POST   /groups/{id}/members/$ref                  -> add_membership
    DELETE /groups/{id}/members/{user}/$ref           -> remove_membership

Throttling (429) and server errors are retried with exponential backoff,
honouring Retry-After. Anything still failing is reported as a transient
error or a False return; transport exceptions never leave this module.
"""

import asyncio
import logging
import re
from typing import Any, Dict, FrozenSet, Optional, Set

import httpx

from ..core.results import Lookup
from .base import DirectoryClient

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

RETRYABLE_STATUS = {429, 500, 502, 503, 504}

GUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


class GraphDirectoryClient(DirectoryClient):
    """
    Directory client for Microsoft Graph.

    Example:
        from azure.identity.aio import ClientSecretCredential

        credential = ClientSecretCredential(tenant_id, client_id, client_secret)
        async with GraphDirectoryClient(credential) as directory:
            if await directory.group_exists(group_id):
                await directory.add_membership(user_id, group_id)
    """

    def __init__(
        self,
        credential: Any,
        base_url: str = GRAPH_BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            credential: azure-identity async credential (anything with an
                awaitable get_token(scope) returning an object with .token)
            base_url: Graph endpoint, overridable for sovereign clouds
            timeout: Per-request timeout in seconds
            max_retries: Retries for throttled or failed requests
            retry_backoff: Base delay for exponential backoff
            transport: Optional httpx transport (tests)
        """
        self.credential = credential
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"content-type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config) -> "GraphDirectoryClient":
        """Build a client from a DirectoryConfig using a client secret credential."""
        from azure.identity.aio import ClientSecretCredential

        credential = ClientSecretCredential(
            tenant_id=config.tenant_id,
            client_id=config.client_id,
            client_secret=config.client_secret,
        )
        return cls(
            credential,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff_seconds,
        )

    async def close(self) -> None:
        await self.client.aclose()
        close = getattr(self.credential, "close", None)
        if close is not None:
            await close()

    # DirectoryClient

    async def lookup_group(self, group_id: str) -> Lookup[str]:
        if not group_id:
            return Lookup.not_found("Empty group id")

        try:
            if GUID_PATTERN.match(group_id):
                response = await self._request("GET", f"/groups/{group_id}", params={"$select": "id"})
                if response.status_code == 404:
                    return Lookup.not_found(f"Group {group_id} does not exist")
                response.raise_for_status()
                return Lookup.found(response.json().get("id", group_id))

            # Display name lookup
            escaped = group_id.replace("'", "''")
            response = await self._request(
                "GET",
                "/groups",
                params={"$filter": f"displayName eq '{escaped}'", "$select": "id"},
            )
            response.raise_for_status()
            matches = response.json().get("value", [])
            if not matches:
                return Lookup.not_found(f"No group named '{group_id}'")
            return Lookup.found(matches[0]["id"])

        except httpx.HTTPStatusError as e:
            logger.error(f"Graph error looking up group {group_id}: {e.response.status_code}")
            return Lookup.transient(f"HTTP {e.response.status_code} looking up group {group_id}")
        except httpx.HTTPError as e:
            logger.error(f"Transport error looking up group {group_id}: {e}")
            return Lookup.transient(f"Transport error looking up group {group_id}: {e}")

    async def fetch_memberships(self, user_id: str) -> Lookup[FrozenSet[str]]:
        groups: Set[str] = set()
        path: Optional[str] = f"/users/{user_id}/memberOf/microsoft.graph.group"
        params: Optional[Dict[str, str]] = {"$select": "id", "$top": "999"}

        try:
            while path:
                response = await self._request("GET", path, params=params)
                if response.status_code == 404:
                    return Lookup.not_found(f"User {user_id} does not exist")
                response.raise_for_status()
                body = response.json()
                groups.update(item["id"] for item in body.get("value", []) if item.get("id"))

                # nextLink is absolute and already carries the query
                path = body.get("@odata.nextLink")
                params = None

        except httpx.HTTPStatusError as e:
            logger.error(f"Graph error listing memberships for {user_id}: {e.response.status_code}")
            return Lookup.transient(f"HTTP {e.response.status_code} listing memberships for {user_id}")
        except httpx.HTTPError as e:
            logger.error(f"Transport error listing memberships for {user_id}: {e}")
            return Lookup.transient(f"Transport error listing memberships for {user_id}: {e}")

        logger.debug(f"User {user_id} is a member of {len(groups)} groups")
        return Lookup.found(frozenset(groups))

    async def add_membership(self, user_id: str, group_id: str) -> bool:
        body = {"@odata.id": f"{self.base_url}/directoryObjects/{user_id}"}
        try:
            response = await self._request("POST", f"/groups/{group_id}/members/$ref", json=body)
        except httpx.HTTPError as e:
            logger.error(f"Transport error adding {user_id} to group {group_id}: {e}")
            return False

        if response.status_code in (200, 201, 204):
            logger.info(f"Added user {user_id} to group {group_id}")
            return True

        text = response.text
        if response.status_code == 400 and "already exist" in text:
            logger.info(f"User {user_id} is already a member of group {group_id}")
            return True
        if response.status_code == 404:
            logger.error(f"User {user_id} or group {group_id} does not exist")
        elif response.status_code == 403:
            logger.error(f"Insufficient permissions to add {user_id} to group {group_id}")
        else:
            logger.error(f"Failed to add {user_id} to group {group_id}: {response.status_code} - {text}")
        return False

    async def remove_membership(self, user_id: str, group_id: str) -> bool:
        try:
            response = await self._request("DELETE", f"/groups/{group_id}/members/{user_id}/$ref")
        except httpx.HTTPError as e:
            logger.error(f"Transport error removing {user_id} from group {group_id}: {e}")
            return False

        if response.status_code in (200, 204):
            logger.info(f"Removed user {user_id} from group {group_id}")
            return True
        if response.status_code == 404:
            # Not a member, or the group is gone: either way not a member now
            logger.info(f"User {user_id} was not a member of group {group_id}")
            return True
        if response.status_code == 403:
            logger.error(f"Insufficient permissions to remove {user_id} from group {group_id}")
        else:
            logger.error(
                f"Failed to remove {user_id} from group {group_id}: "
                f"{response.status_code} - {response.text}"
            )
        return False

    # HTTP

    async def _auth_header(self) -> Dict[str, str]:
        token = await self.credential.get_token(GRAPH_SCOPE)
        return {"Authorization": f"Bearer {token.token}"}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request, retrying throttled and server-side failures."""
        attempt = 0
        while True:
            headers = await self._auth_header()
            try:
                response = await self.client.request(method, path, headers=headers, **kwargs)
            except httpx.TransportError as e:
                if attempt >= self.max_retries:
                    raise
                delay = self._backoff(attempt)
                logger.warning(f"{method} {path} failed ({e}); retrying in {delay:.1f}s")
            else:
                if response.status_code not in RETRYABLE_STATUS or attempt >= self.max_retries:
                    return response
                delay = self._retry_after(response) or self._backoff(attempt)
                logger.warning(
                    f"{method} {path} returned {response.status_code}; retrying in {delay:.1f}s"
                )

            attempt += 1
            await asyncio.sleep(delay)

    def _backoff(self, attempt: int) -> float:
        return self.retry_backoff * (2 ** attempt)

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None
