"""Google OAuth for the poller: one cached token serves both Gmail and Calendar."""

from __future__ import annotations

import logging

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build

from . import constants

logger = logging.getLogger(__name__)


def _load_token() -> Credentials | None:
    if not constants.TOKEN_PATH.exists():
        return None
    # Loaded with the scopes it was granted, not the ones we ask for.
    creds = Credentials.from_authorized_user_file(str(constants.TOKEN_PATH))
    if not creds.has_scopes(constants.SCOPES):
        logger.warning("Cached token at %s lacks Gmail modify or Calendar access, re-authorizing", constants.TOKEN_PATH)
        return None
    return creds


def _authorize() -> Credentials:
    if not constants.CREDENTIALS_PATH.exists():
        raise FileNotFoundError(
            f"Credentials file not found at {constants.CREDENTIALS_PATH}.\n"
            "Create a Desktop OAuth client in the Google Cloud Console with both the "
            "Gmail API and the Google Calendar API enabled, then save its JSON as:\n"
            f"  {constants.CREDENTIALS_PATH}"
        )
    flow = InstalledAppFlow.from_client_secrets_file(str(constants.CREDENTIALS_PATH), constants.SCOPES)
    return flow.run_local_server(port=0)


def get_credentials() -> Credentials:
    """Return one set of credentials granting every scope in SCOPES.

    The poller reads and marks mail (``gmail.modify``) and writes events
    (``calendar``) with the same token. A cached token missing either scope
    is discarded and consent is requested again, so a token left over from a
    Gmail-only setup cannot silently break calendar writes. Expired tokens are
    refreshed without a browser round-trip.

    Raises:
        FileNotFoundError: Consent is needed and no OAuth client file exists.
    """
    constants.CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    creds = _load_token()
    if creds and creds.expired and creds.refresh_token:
        logger.debug("Refreshing expired Google token")
        creds.refresh(Request())
    elif not creds or not creds.valid:
        creds = _authorize()

    constants.TOKEN_PATH.write_text(creds.to_json())
    return creds


def get_services(creds: Credentials | None = None) -> tuple[Resource, Resource]:
    creds = creds or get_credentials()
    return build("gmail", "v1", credentials=creds), build("calendar", "v3", credentials=creds)


def check_auth() -> tuple[bool, str]:
    """Reach both APIs once. Returns (ok, account address or failure reason)."""
    try:
        gmail, calendar = get_services()
        profile = gmail.users().getProfile(userId=constants.USER_ID).execute()
        calendar.calendarList().get(calendarId=constants.DEFAULT_CALENDAR_ID).execute()
    except Exception as exc:  # noqa: BLE001
        return False, f"Authentication failed: {exc}"
    return True, f"Authenticated as {profile['emailAddress']}"
