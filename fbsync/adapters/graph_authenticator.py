"""
Microsoft Graph API authentication using MSAL (Client Credentials Flow).
"""

from __future__ import annotations

import logging
from typing import Optional

import keyring
import msal
from keyring.errors import KeyringError, PasswordDeleteError

from ..domain.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


KEYRING_SERVICE_NAME = "fbsync"


class GraphAuthenticator:
    """
    Handles app-only authentication with Microsoft Graph.

    The connector reads other users' calendars, so it authenticates as the
    registered application rather than as a signed-in user:
    1. Resolve the client secret (argument, then OS keyring)
    2. Request a token for the ``.default`` scope
    3. MSAL keeps the token in memory until it expires

    The application needs the ``Calendars.Read`` application permission.
    """

    SCOPES = ["https://graph.microsoft.com/.default"]

    def __init__(
        self,
        client_id: str,
        tenant_id: str,
        client_secret: str | None = None,
        authority_url: str | None = None,
    ):
        """
        Initialize the authenticator.

        Args:
            client_id: Azure AD application (client) ID
            tenant_id: Azure AD tenant ID
            client_secret: Optional secret, looked up in the keyring if omitted
            authority_url: Optional custom authority URL
        """
        self.client_id = client_id
        self.tenant_id = tenant_id
        self.authority = authority_url or f"https://login.microsoftonline.com/{tenant_id}"
        self._client_secret = client_secret
        self._app: Optional[msal.ConfidentialClientApplication] = None

    def _resolve_secret(self) -> str:
        if self._client_secret:
            return self._client_secret

        try:
            secret = keyring.get_password(KEYRING_SERVICE_NAME, self.client_id)
        except KeyringError as exc:  # pragma: no cover - environment dependent
            raise AuthenticationError(f"Reading client secret from keyring failed: {exc}") from exc

        if not secret:
            raise AuthenticationError(
                f"No client secret configured for application {self.client_id}. "
                "Set client_secret in the config or run 'fbsync store-secret'."
            )
        return secret

    def _get_app(self) -> msal.ConfidentialClientApplication:
        if self._app is None:
            try:
                self._app = msal.ConfidentialClientApplication(
                    client_id=self.client_id,
                    client_credential=self._resolve_secret(),
                    authority=self.authority,
                )
            except ValueError as exc:
                raise AuthenticationError(f"Invalid authority {self.authority}: {exc}") from exc
        return self._app

    def get_access_token(self) -> str:
        """
        Get a valid app-only access token.

        Returns:
            Access token string

        Raises:
            AuthenticationError: If authentication fails
        """
        result = self._get_app().acquire_token_for_client(scopes=self.SCOPES)

        if not result or "access_token" not in result:
            error = (result or {}).get("error_description", "Unknown error")
            raise AuthenticationError(f"Authentication failed: {error}")

        logger.debug("Acquired Graph token (source: %s)", result.get("token_source", "identity_provider"))
        return result["access_token"]

    def store_secret(self, secret: str) -> None:
        """Save the client secret in the OS keyring."""
        try:
            keyring.set_password(KEYRING_SERVICE_NAME, self.client_id, secret)
        except KeyringError as exc:
            raise AuthenticationError(f"Writing client secret to keyring failed: {exc}") from exc
        self._client_secret = secret
        self._app = None

    def clear_secret(self) -> None:
        """Remove the client secret from the OS keyring."""
        try:
            keyring.delete_password(KEYRING_SERVICE_NAME, self.client_id)
        except PasswordDeleteError:
            logger.info("No client secret stored for %s", self.client_id)
        except KeyringError as exc:  # pragma: no cover - environment dependent
            logger.warning("Could not remove client secret from keyring: %s", exc)
        self._client_secret = None
        self._app = None
