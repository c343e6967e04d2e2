# comedor/services/google_auth.py
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Sequence

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from core.settings import CLIENT_SECRET_PATH, FIRESTORE, SERVICE_ACCOUNT_PATH, TOKEN_PATH


logger = logging.getLogger("comedor.auth")


class GoogleAuth:
    """Credentials for the Firestore REST API.

    A service account key in the secrets directory is preferred; otherwise the
    desktop OAuth consent flow is used and its token cached in ``token.json``.
    """

    def __init__(
        self,
        secrets_path: str | Path = CLIENT_SECRET_PATH,
        token_path: str | Path = TOKEN_PATH,
        service_account_path: str | Path = SERVICE_ACCOUNT_PATH,
        scopes: Sequence[str] = FIRESTORE.scopes,
    ):
        self.secrets_path = Path(secrets_path)
        self.token_path = Path(token_path)
        self.service_account_path = Path(service_account_path)
        self.scopes = list(scopes)
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.creds = None
        logger.debug("Token path: %s", self.token_path)

    def ensure_credentials(self) -> bool:
        if self.creds and self.creds.valid:
            return True

        if self.service_account_path.exists():
            self.creds = service_account.Credentials.from_service_account_file(
                str(self.service_account_path), scopes=self.scopes
            )
            self.creds.refresh(Request())
            logger.info("Using service account %s", self.creds.service_account_email)
            return True

        if self.token_path.exists():
            try:
                self.creds = Credentials.from_authorized_user_file(str(self.token_path), self.scopes)
            except (ValueError, json.JSONDecodeError) as exc:
                logger.warning("Failed to load token.json: %s; triggering reauth", exc)
                self.reset_credentials()

        if self.creds and not self._has_required_scopes(self.creds):
            logger.info("Token is missing required scopes; requesting consent again")
            self.reset_credentials()

        if self.creds and not self.creds.valid and self.creds.expired and self.creds.refresh_token:
            try:
                self.creds.refresh(Request())
            except RefreshError as exc:
                logger.warning("Token refresh failed: %s; forcing reauth", exc)
                self.reset_credentials()

        if not self.creds or not self.creds.valid:
            if not self.secrets_path.exists():
                raise FileNotFoundError(
                    f"Missing {self.secrets_path} or {self.service_account_path}. "
                    "Download an OAuth desktop client or a service account key from Google Cloud."
                )
            flow = InstalledAppFlow.from_client_secrets_file(str(self.secrets_path), self.scopes)
            logger.info("Running OAuth consent flow (local server)")
            self.creds = flow.run_local_server(port=0, access_type="offline", prompt="consent")

        if not self.creds:
            raise RuntimeError("Could not obtain Google credentials")

        self._persist_credentials(self.creds)
        self._log_active_scopes(self.creds.scopes)
        return True

    def get_credentials(self):
        return self.creds

    def reset_credentials(self) -> None:
        self.creds = None
        try:
            if self.token_path.exists():
                self.token_path.unlink()
                logger.info("Removed cached Google token")
        except OSError as exc:
            logger.warning("Failed to remove cached token: %s", exc)

    # ----- helpers -----
    def _persist_credentials(self, creds: Credentials) -> None:
        tmp_path = self.token_path.with_suffix(".tmp")
        try:
            tmp_path.write_text(creds.to_json(), encoding="utf-8")
            os.replace(tmp_path, self.token_path)
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass

    def _has_required_scopes(self, creds: Credentials) -> bool:
        current = set(creds.scopes or [])
        return all(scope in current for scope in self.scopes)

    @staticmethod
    def _log_active_scopes(scopes: Optional[Iterable[str]]) -> None:
        scopes_list = sorted(set(scopes or []))
        logger.info("Active scopes: %s", ", ".join(scopes_list) if scopes_list else "-")


__all__ = ["GoogleAuth"]
