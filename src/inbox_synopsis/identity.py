"""Identity provider backed by the local Gmail OAuth token file."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Protocol

import structlog

from inbox_synopsis.config import Settings
from inbox_synopsis.exceptions import ConfigurationError, UnauthenticatedError
from inbox_synopsis.models import CallerIdentity

logger = structlog.get_logger()


class IdentityProvider(Protocol):
    async def current_user(self) -> CallerIdentity: ...


class TokenFileIdentityProvider:
    """Resolves the caller from ``gmail_token_path``.

    An expired token is refreshed and written back. With ``interactive=True``
    a missing or unusable token starts the browser consent flow; otherwise it
    raises ``UnauthenticatedError``.
    """

    def __init__(self, settings: Settings | None = None, *, interactive: bool = False) -> None:
        from inbox_synopsis.config import get_settings

        self.settings = settings or get_settings()
        self._interactive = interactive

    async def current_user(self) -> CallerIdentity:
        """Return the configured owner and a valid mailbox access token.

        Raises:
            UnauthenticatedError: No usable stored credentials.
            ConfigurationError: Consent flow requested without a client secrets file.
        """

        token = await asyncio.to_thread(self._load_token)
        logger.info("caller_resolved", owner_id=self.settings.owner_id)
        return CallerIdentity(id=self.settings.owner_id, mailbox_token=token)

    def _load_token(self) -> str:
        # Imported lazily to keep import-time cost low and tests fast.
        from google.auth.exceptions import RefreshError
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials

        token_path = Path(self.settings.gmail_token_path)
        scope = self.settings.gmail_scope

        creds: Any = None
        if token_path.exists():
            try:
                creds = Credentials.from_authorized_user_file(str(token_path), scopes=[scope])
            except ValueError as exc:
                logger.warning("gmail_token_file_invalid", token_path=str(token_path), error=str(exc))

        if creds is not None and creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
            except RefreshError as exc:
                logger.warning("gmail_token_refresh_failed", error=str(exc))
                creds = None
            else:
                token_path.write_text(creds.to_json(), encoding="utf-8")

        if creds is None or not creds.valid:
            if not self._interactive:
                raise UnauthenticatedError(
                    f"No valid Gmail credentials at {token_path}; run 'inbox-synopsis login'."
                )
            creds = self._run_consent_flow(token_path, scope)

        return str(creds.token)

    def _run_consent_flow(self, token_path: Path, scope: str) -> Any:
        from google_auth_oauthlib.flow import InstalledAppFlow

        credentials_path = Path(self.settings.gmail_credentials_path)
        if not credentials_path.exists():
            raise ConfigurationError(f"Gmail credentials file not found: {credentials_path}.")

        logger.info("gmail_consent_flow_started", credentials_path=str(credentials_path))
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=[scope])
        creds = flow.run_local_server(port=0)
        token_path.parent.mkdir(parents=True, exist_ok=True)
        token_path.write_text(creds.to_json(), encoding="utf-8")
        return creds
