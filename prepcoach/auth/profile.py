import logging
from typing import Any

import httpx

from ..config import PROFILE_MODE_LEGACY, PROFILE_MODE_USERINFO, AuthSettings
from .errors import STAGE_PROFILE, AuthError
from .models import ExternalProfile

logger = logging.getLogger(__name__)

PUBLIC_PROFILE_BASE = "https://www.linkedin.com/in/"


def _legacy_picture(data: dict[str, Any]) -> str | None:
    # profilePicture.displayImage~.elements[0].identifiers[0].identifier
    try:
        elements = data["profilePicture"]["displayImage~"]["elements"]
        return elements[0]["identifiers"][0]["identifier"] or None
    except (KeyError, IndexError, TypeError):
        return None


def _legacy_email(data: Any) -> str | None:
    try:
        return data["elements"][0]["handle~"]["emailAddress"] or None
    except (KeyError, IndexError, TypeError):
        return None


class ProfileFetcher:
    """Reads the signed-in member's identity from the provider."""

    def __init__(
        self,
        mode: str = PROFILE_MODE_USERINFO,
        *,
        userinfo_url: str,
        me_url: str,
        email_url: str,
        timeout: float = 10.0,
    ):
        if mode not in (PROFILE_MODE_USERINFO, PROFILE_MODE_LEGACY):
            raise ValueError(f"unknown profile mode: {mode!r}")
        self.mode = mode
        self.userinfo_url = userinfo_url
        self.me_url = me_url
        self.email_url = email_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "ProfileFetcher":
        ep = settings.endpoints
        return cls(
            settings.profile_mode,
            userinfo_url=ep.userinfo_url,
            me_url=ep.me_url,
            email_url=ep.email_url,
            timeout=settings.http_timeout,
        )

    async def fetch(self, access_token: str) -> ExternalProfile:
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            if self.mode == PROFILE_MODE_LEGACY:
                profile = await self._fetch_legacy(client, headers)
            else:
                profile = await self._fetch_userinfo(client, headers)
        logger.info(
            "Profile fetched",
            extra={
                "meta": {
                    "mode": self.mode,
                    "has_email": bool(profile.email),
                    "has_picture": bool(profile.picture_url),
                }
            },
        )
        return profile

    async def _get_json(self, client: httpx.AsyncClient, url: str, headers: dict[str, str]) -> dict[str, Any]:
        try:
            r = await client.get(url, headers=headers)
        except httpx.TimeoutException as exc:
            raise AuthError(STAGE_PROFILE, "profile request timed out", {"url": url, "reason": "timeout"}) from exc
        except httpx.RequestError as exc:
            raise AuthError(STAGE_PROFILE, "profile request failed: network error", {"url": url, "reason": "network"}) from exc
        if r.status_code >= 300:
            logger.warning(
                "Profile request failed",
                extra={"meta": {"url": url, "provider_status_code": r.status_code}},
            )
            raise AuthError(
                STAGE_PROFILE,
                f"profile request failed with HTTP {r.status_code}",
                {"url": url, "status_code": r.status_code, "body": r.text[:2000]},
            )
        try:
            data = r.json()
        except ValueError as exc:
            raise AuthError(
                STAGE_PROFILE,
                "profile response was not JSON",
                {"url": url, "status_code": r.status_code, "body": r.text[:2000]},
            ) from exc
        if not isinstance(data, dict):
            raise AuthError(STAGE_PROFILE, "profile response was not an object", {"url": url})
        return data

    async def _fetch_userinfo(self, client: httpx.AsyncClient, headers: dict[str, str]) -> ExternalProfile:
        data = await self._get_json(client, self.userinfo_url, headers)
        subject = data.get("sub")
        if not subject:
            raise AuthError(STAGE_PROFILE, "profile is missing a subject id", {"keys": sorted(data)})
        name = data.get("name") or " ".join(
            p for p in (data.get("given_name"), data.get("family_name")) if p
        )
        return ExternalProfile(
            subject_id=str(subject),
            display_name=name or "",
            email=data.get("email") or None,
            picture_url=data.get("picture") or None,
            profile_url=data.get("profile") or None,
        )

    async def _fetch_legacy(self, client: httpx.AsyncClient, headers: dict[str, str]) -> ExternalProfile:
        data = await self._get_json(client, self.me_url, headers)
        subject = data.get("id")
        if not subject:
            raise AuthError(STAGE_PROFILE, "profile is missing a subject id", {"keys": sorted(data)})
        name = " ".join(p for p in (data.get("localizedFirstName"), data.get("localizedLastName")) if p)
        vanity = data.get("vanityName")

        # email is a separate permission; missing it must not block sign-in
        email = None
        try:
            email = _legacy_email(await self._get_json(client, self.email_url, headers))
        except AuthError as e:
            logger.warning("Email lookup failed; continuing without email", extra={"meta": {"error": e.message}})

        return ExternalProfile(
            subject_id=str(subject),
            display_name=name,
            email=email,
            picture_url=_legacy_picture(data),
            profile_url=f"{PUBLIC_PROFILE_BASE}{vanity}" if vanity else None,
        )


__all__ = ["ProfileFetcher"]
