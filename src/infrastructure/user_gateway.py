"""
Client for the user service, which owns rider and driver profiles.

Only one query is needed here: resolving display names for a trip's
rider and (optional) driver.  The caller's ``Authorization`` header is
forwarded untouched; token handling belongs to the user service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from src.domain.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserDriverNames:
    user_name: str
    driver_name: str = ""


class UserInfoGateway(Protocol):
    async def resolve_names(
        self,
        user_id: str,
        driver_id: Optional[str],
        authorization: Optional[str] = None,
    ) -> UserDriverNames: ...


class HttpUserInfoGateway:
    def __init__(
        self,
        base_url: str,
        timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def resolve_names(
        self,
        user_id: str,
        driver_id: Optional[str],
        authorization: Optional[str] = None,
    ) -> UserDriverNames:
        path = f"/{user_id}/{driver_id}" if driver_id else f"/{user_id}"
        headers = {"Authorization": authorization} if authorization else None

        try:
            response = await self.client.get(path, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailable(
                f"User service timed out after {self.timeout}s"
            ) from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "User service answered %s for %s", exc.response.status_code, path
            )
            raise UpstreamUnavailable(
                f"User service returned {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailable(f"User service unreachable: {exc}") from exc

        if not isinstance(data, dict):
            raise UpstreamUnavailable("User service returned an unexpected body")
        return UserDriverNames(
            user_name=data.get("userName") or "",
            driver_name=(data.get("driverName") or "") if driver_id else "",
        )
