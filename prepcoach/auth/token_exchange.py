import logging
from typing import Any

import httpx

from ..config import AuthSettings
from .errors import STAGE_TOKEN_EXCHANGE, AuthError
from .models import AccessToken, AuthAttempt

logger = logging.getLogger(__name__)

# keep raw provider bodies bounded in error details
_MAX_BODY = 2000


def _mentions_redirect(body: Any) -> bool:
    text = str(body).lower()
    return "redirect_uri" in text or "redirect uri" in text


class TokenExchangeClient:
    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
    ):
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "TokenExchangeClient":
        return cls(
            settings.endpoints.token_url,
            settings.client_id,
            settings.client_secret,
            timeout=settings.http_timeout,
        )

    async def exchange(self, code: str, attempt: AuthAttempt) -> AccessToken:
        """Trade an authorization code for an access token.

        ``redirect_uri`` must equal the one the provider saw at authorization
        time, so it is read straight off the attempt. Raises AuthError at the
        token_exchange stage on any failure.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": attempt.active_redirect_uri,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                r = await client.post(self.token_url, data=data, headers=headers)
            except httpx.TimeoutException as exc:
                logger.warning("Token exchange timed out", extra={"meta": {"error": str(exc)}})
                raise AuthError(
                    STAGE_TOKEN_EXCHANGE,
                    "token exchange timed out",
                    {"reason": "timeout", "redirect_uri": attempt.active_redirect_uri},
                ) from exc
            except httpx.RequestError as exc:
                logger.warning("Token exchange network error", extra={"meta": {"error": str(exc)}})
                raise AuthError(
                    STAGE_TOKEN_EXCHANGE,
                    "token exchange failed: network error",
                    {"reason": "network", "redirect_uri": attempt.active_redirect_uri},
                ) from exc

        raw_text = r.text[:_MAX_BODY]
        try:
            body = r.json()
        except ValueError:
            body = None

        details: dict[str, Any] = {
            "status_code": r.status_code,
            "body": body if isinstance(body, dict) else raw_text,
            "redirect_uri": attempt.active_redirect_uri,
        }

        if r.status_code >= 300 or not isinstance(body, dict) or body.get("error") or not body.get("access_token"):
            details["redirect_mismatch"] = _mentions_redirect(details["body"])
            if isinstance(body, dict) and body.get("error"):
                message = f"token exchange failed: {body.get('error')}"
                if body.get("error_description"):
                    message += f" - {body['error_description']}"
            elif r.status_code >= 300:
                message = f"token exchange failed with HTTP {r.status_code}"
            elif not isinstance(body, dict):
                message = "token exchange returned a non-JSON response"
            else:
                message = "token exchange response did not include an access token"
            logger.warning(
                "Token exchange failed",
                extra={
                    "meta": {
                        "provider_status_code": r.status_code,
                        "provider_error": body.get("error") if isinstance(body, dict) else None,
                        "redirect_uri": attempt.active_redirect_uri,
                        "redirect_mismatch": details["redirect_mismatch"],
                    }
                },
            )
            raise AuthError(STAGE_TOKEN_EXCHANGE, message, details)

        expires_in = body.get("expires_in")
        if expires_in is not None:
            try:
                expires_in = int(expires_in)
            except (TypeError, ValueError) as exc:
                details["redirect_mismatch"] = False
                logger.warning(
                    "Token exchange returned a malformed expires_in",
                    extra={"meta": {"expires_in": str(expires_in)[:64]}},
                )
                raise AuthError(
                    STAGE_TOKEN_EXCHANGE, "token exchange returned an invalid expires_in", details
                ) from exc
        token = AccessToken(
            access_token=str(body["access_token"]),
            token_type=str(body.get("token_type") or "Bearer"),
            expires_in=expires_in,
            scope=body.get("scope"),
            id_token=body.get("id_token"),
        )
        logger.info(
            "Token exchange successful",
            extra={
                "meta": {
                    "access_token_length": len(token.access_token),
                    "has_id_token": bool(token.id_token),
                    "token_type": token.token_type,
                    "scope": token.scope,
                    "expires_in": token.expires_in,
                }
            },
        )
        return token


__all__ = ["TokenExchangeClient"]
