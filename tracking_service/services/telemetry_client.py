"""
Telemetry provider client.

Talks to the Wialon remote API: exchanges the API token for a session id,
attaches it to every call and renews it once when the provider reports the
session as invalid.
"""
import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import structlog

from tracking_service.exceptions import AuthError, RemoteError

logger = structlog.get_logger(__name__)

# Provider error code for an invalid or expired session
INVALID_SESSION = 1

# All data flags; a unit lookup then carries position, parameters and sensors
ALL_FLAGS = 4294967295

DEFAULT_UNIT_SPEC = {
    "itemsType": "avl_unit",
    "propName": "sys_name",
    "propValueMask": "*",
    "sortType": "sys_name",
}


class TelemetryClient:
    """Session-aware client for the telemetry provider."""

    def __init__(
        self,
        api_url: str,
        token: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self._token = token
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._session_id: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def has_session(self) -> bool:
        return self._session_id is not None

    async def _post(self, params: Dict[str, str]) -> Any:
        try:
            response = await self._http.post(self.api_url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise RemoteError(f"Telemetry provider unreachable: {e}", detail=str(e)) from e
        except ValueError as e:
            raise RemoteError("Telemetry provider returned invalid JSON", detail=str(e)) from e

    async def _login_locked(self) -> str:
        try:
            data = await self._post({
                "svc": "token/login",
                "params": json.dumps({"token": self._token}),
            })
        except RemoteError as e:
            raise AuthError(f"Telemetry login failed: {e.message}", detail=e.detail) from e

        session_id = data.get("eid") if isinstance(data, dict) else None
        if not session_id:
            code = data.get("error") if isinstance(data, dict) else None
            raise AuthError("Failed to retrieve session ID", detail={"error": code})

        self._session_id = session_id
        logger.info("telemetry_login_succeeded")
        return session_id

    async def login(self) -> str:
        """Open a new provider session and return its id."""
        async with self._lock:
            return await self._login_locked()

    async def _current_session(self) -> str:
        async with self._lock:
            if self._session_id is None:
                logger.info("telemetry_session_missing")
                await self._login_locked()
            return self._session_id

    async def _renew_session(self, stale: str) -> str:
        async with self._lock:
            # Another caller may already have replaced the stale session
            if self._session_id is None or self._session_id == stale:
                await self._login_locked()
            return self._session_id

    async def _call(self, service: str, params: Dict[str, Any], session_id: str) -> Any:
        return await self._post({
            "svc": service,
            "params": json.dumps(params),
            "sid": session_id,
        })

    async def request(self, service: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Call a provider service with the current session.

        An invalid-session answer triggers one re-login and one retry; any
        error reported after that raises RemoteError.
        """
        session_id = await self._current_session()
        data = await self._call(service, params, session_id)

        if isinstance(data, dict) and data.get("error") == INVALID_SESSION:
            logger.info("telemetry_session_expired", service=service)
            session_id = await self._renew_session(session_id)
            data = await self._call(service, params, session_id)

        if not isinstance(data, dict):
            raise RemoteError(f"Unexpected response from {service}", detail=data)

        code = data.get("error")
        if code:
            raise RemoteError(f"Telemetry provider error {code} on {service}", code=code)
        return data

    async def search_unit_by_id(self, unit_id: Any, flags: int = 256) -> Dict[str, Any]:
        return await self.request("core/search_item", {"id": unit_id, "flags": flags})

    async def search_units(
        self,
        spec: Optional[Dict[str, Any]] = None,
        flags: int = 1025,
        from_index: int = 0,
        to_index: int = 0,
        force: int = 1,
    ) -> Dict[str, Any]:
        return await self.request("core/search_items", {
            "spec": spec or dict(DEFAULT_UNIT_SPEC),
            "force": force,
            "flags": flags,
            "from": from_index,
            "to": to_index,
        })

    async def find_units_by_plate(self, plate: str, flags: int = 1025) -> List[Dict[str, Any]]:
        """Fuzzy search of units whose name contains the plate."""
        spec = dict(DEFAULT_UNIT_SPEC, propValueMask=f"*{plate.strip()}*")
        data = await self.search_units(spec=spec, flags=flags)
        return data.get("items") or []

    async def logout(self) -> None:
        """Close the provider session, if any. Failures are only logged."""
        async with self._lock:
            session_id, self._session_id = self._session_id, None
        if session_id is None:
            return
        try:
            await self._call("core/logout", {}, session_id)
        except RemoteError as e:
            logger.warning("telemetry_logout_failed", error=e.message)

    async def close(self) -> None:
        await self._http.aclose()
