"""Credentials management for Google API access.

Supports two authentication modes:
1. Service account - JSON key embedded in the job parameters
2. OAuth - refresh token issued to an OAuth client (app key and secret)

Both hand out short-lived access tokens and can be asked for a new one when
the API rejects the current token.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from datetime import UTC
from typing import TYPE_CHECKING, Any

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2 import credentials as oauth2_credentials
from google.oauth2 import service_account
from loguru import logger

from sheetexport.exceptions import UserError

if TYPE_CHECKING:
    from google.auth.credentials import Credentials

    from sheetexport.config import JobConfig, OAuthCredentialsConfig

SCOPES = [
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/spreadsheets",
]
TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass
class Token:
    """Access token for Google API calls.

    Attributes:
        access_token: The OAuth2 access token for API calls.
        expires_at: Unix timestamp when the token expires, 0 when unknown.
        account: Service account email or OAuth client id.
    """

    access_token: str
    expires_at: float = 0
    account: str = ""

    def is_valid(self, buffer_seconds: int = 60) -> bool:
        """Check if token is still valid with a safety buffer."""
        if not self.expires_at:
            return bool(self.access_token)
        return time.time() < self.expires_at - buffer_seconds

    def expires_in_seconds(self) -> int:
        """Return seconds until token expires."""
        return max(0, int(self.expires_at - time.time()))


class GoogleCredentials:
    """Wraps google-auth credentials and converts them to Tokens."""

    auth_mode = "google"

    def __init__(self, credentials: Credentials, account: str = "") -> None:
        self._credentials = credentials
        self._account = account

    def get_token(self, force_refresh: bool = False) -> Token:
        """Get a valid access token, refreshing it if necessary.

        Raises:
            UserError: if Google refuses to issue a token.
        """
        if force_refresh or not self._credentials.valid:
            logger.debug(f"Refreshing {self.auth_mode} access token")
            try:
                self._credentials.refresh(Request())
            except RefreshError as e:
                raise UserError(self._refresh_error_message(e)) from e

        expiry = self._credentials.expiry
        return Token(
            access_token=str(self._credentials.token or ""),
            expires_at=expiry.replace(tzinfo=UTC).timestamp() if expiry else 0,
            account=self._account,
        )

    def refresh(self) -> str:
        """Force a new access token and return it.

        Used as the transport's unauthorized callback.
        """
        return self.get_token(force_refresh=True).access_token

    async def arefresh(self) -> str:
        """Async variant of ``refresh`` that keeps the event loop free."""
        return await asyncio.to_thread(self.refresh)

    def _refresh_error_message(self, error: RefreshError) -> str:
        return f"Failed to obtain access token: {error}"


class ServiceAccountCredentials(GoogleCredentials):
    """Credentials from a service account JSON key."""

    auth_mode = "service_account"

    def __init__(self, info: dict[str, Any], scopes: list[str] | None = None) -> None:
        """Initialize from parsed key data.

        Raises:
            UserError: if the key misses ``client_email`` or ``private_key``
                or cannot be loaded.
        """
        if not info.get("client_email") or not info.get("private_key"):
            raise UserError(
                "Invalid Service Account JSON in parameters.#serviceAccountJson"
            )
        info = dict(info)
        info["private_key"] = _normalize_pem(info["private_key"])
        info.setdefault("token_uri", TOKEN_URI)
        try:
            credentials = service_account.Credentials.from_service_account_info(
                info, scopes=scopes or SCOPES
            )
        except ValueError as e:
            raise UserError(f"Invalid service account private key: {e}") from e
        super().__init__(credentials, account=info["client_email"])

    def _refresh_error_message(self, error: RefreshError) -> str:
        return f"Failed to obtain access token from Service Account: {error}"


class OAuthCredentials(GoogleCredentials):
    """Credentials from an OAuth refresh token."""

    auth_mode = "oauth"

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        token_data: dict[str, Any],
        scopes: list[str] | None = None,
    ) -> None:
        """Initialize from the stored OAuth token data.

        Raises:
            UserError: if there is no refresh token.
        """
        if not token_data.get("refresh_token"):
            raise UserError("OAuth credentials are invalid: missing refresh_token.")
        credentials = oauth2_credentials.Credentials(
            token=token_data.get("access_token") or None,
            refresh_token=token_data["refresh_token"],
            client_id=app_key,
            client_secret=app_secret,
            token_uri=TOKEN_URI,
            scopes=scopes or SCOPES,
        )
        super().__init__(credentials, account=app_key)

    def _refresh_error_message(self, error: RefreshError) -> str:
        if "invalid_grant" in str(error):
            return "Invalid OAuth grant, try reauthenticating the extractor"
        return f"Failed to refresh OAuth access token: {error}"


def credentials_from_config(job: JobConfig) -> GoogleCredentials:
    """Pick the credentials configured for a job.

    A service account key takes precedence over OAuth credentials.

    Raises:
        UserError: if neither is configured or the configured one is invalid.
    """
    sa_raw = job.parameters.service_account_json
    if sa_raw:
        return ServiceAccountCredentials(_parse_service_account(sa_raw))

    oauth = job.oauth_credentials
    if oauth is None or not oauth.data:
        raise UserError(
            "Missing authorization: provide either parameters.#serviceAccountJson"
            " or authorization.oauth_api.credentials.#data"
        )
    return _oauth_from_config(oauth)


def _parse_service_account(raw: dict[str, Any] | str) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        info = json.loads(raw)
    except json.JSONDecodeError as e:
        raise UserError(
            "Invalid Service Account JSON in parameters.#serviceAccountJson"
        ) from e
    if not isinstance(info, dict):
        raise UserError("Invalid Service Account JSON in parameters.#serviceAccountJson")
    return info


def _oauth_from_config(oauth: OAuthCredentialsConfig) -> OAuthCredentials:
    try:
        token_data = json.loads(oauth.data or "")
    except json.JSONDecodeError as e:
        raise UserError("OAuth credentials are invalid: #data is not JSON.") from e
    if not isinstance(token_data, dict):
        raise UserError("OAuth credentials are invalid: missing refresh_token.")
    return OAuthCredentials(oauth.app_key, oauth.app_secret, token_data)


def _normalize_pem(pem: str) -> str:
    """Keys pasted into JSON config often carry literal ``\\n`` sequences."""
    if "\\n" in pem:
        return pem.replace("\\n", "\n")
    return pem
