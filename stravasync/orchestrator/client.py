"""HTTP transport for the remote endpoints the orchestrator talks to.

Endpoints used (relative to ``base_url``):
    GET  /api/user-data/{user_id}     - persisted sync flag and last sync time
    POST /api/user-data/{user_id}     - partial update, optionally smart-merged
    GET  /api/strava/check-token      - credential verification
    POST /api/strava/refresh-token    - credential refresh
    GET  /api/strava/activities       - recent remote activities
    GET  /api/strava/auth             - authorization redirect URL

Methods return the raw ``httpx.Response``; status interpretation belongs to
the callers.  Transport errors (``httpx.TransportError``) propagate so the
request coordinator can retry them.
"""

from __future__ import annotations

from typing import Any

import httpx

from stravasync.orchestrator.base import Identity

SMART_MERGE = "smart"


class RemoteClient:
    """Thin async wrapper over the remote API.

    Args:
        base_url:    Root URL of the remote API.
        timeout:     Per-request timeout in seconds.
        http_client: Optional pre-configured httpx client (for testing).
                     When omitted the client owns one and closes it in
                     ``aclose()``.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # User data
    # ------------------------------------------------------------------

    async def get_user_data(self, identity: Identity) -> httpx.Response:
        return await self._http.get(
            f"/api/user-data/{identity.user_id}", headers=identity.auth_headers
        )

    async def post_user_data(
        self,
        identity: Identity,
        data: dict[str, Any],
        merge_strategy: str | None = None,
    ) -> httpx.Response:
        """Persist a partial user-data update.

        Args:
            identity:       Signed-in user.
            data:           Fields to write under ``data``.
            merge_strategy: Server-side merge hint (e.g. ``"smart"``); omitted
                            when None.
        """
        body: dict[str, Any] = {"data": data}
        if merge_strategy:
            body["mergeStrategy"] = merge_strategy
        return await self._http.post(
            f"/api/user-data/{identity.user_id}", json=body, headers=identity.auth_headers
        )

    # ------------------------------------------------------------------
    # Credential
    # ------------------------------------------------------------------

    async def check_token(self, identity: Identity) -> httpx.Response:
        return await self._http.get("/api/strava/check-token", headers=identity.auth_headers)

    async def refresh_token(self, identity: Identity) -> httpx.Response:
        return await self._http.post(
            "/api/strava/refresh-token",
            json={"userId": identity.user_id},
            headers=identity.auth_headers,
        )

    async def get_authorization_url(self) -> httpx.Response:
        return await self._http.get("/api/strava/auth")

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    async def get_activities(self, identity: Identity) -> httpx.Response:
        return await self._http.get("/api/strava/activities", headers=identity.auth_headers)
