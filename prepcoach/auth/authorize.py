from __future__ import annotations

from urllib.parse import urlencode

from .errors import MSG_NOT_CONFIGURED, STAGE_AUTHORIZATION, AuthError
from .models import AuthAttempt


def build_authorization_url(auth_url: str, client_id: str, scope: str, attempt: AuthAttempt) -> str:
    """Return the provider authorization URL for ``attempt``.

    ``redirect_uri`` is the attempt's active candidate, unmodified; the token
    exchange later sends the same string.
    """
    if not client_id:
        raise AuthError(STAGE_AUTHORIZATION, MSG_NOT_CONFIGURED, {"missing": "client_id"})
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": attempt.active_redirect_uri,
        "state": attempt.state_token,
        "scope": scope,
    }
    sep = "&" if "?" in auth_url else "?"
    return f"{auth_url}{sep}{urlencode(params)}"


__all__ = ["build_authorization_url"]
