# google_client.py
import os

import httplib2
from dotenv import load_dotenv
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

load_dotenv()

SCOPES = [
    "https://www.googleapis.com/auth/drive",
]

# socket timeout for a single chunk request; the overall upload deadline
# is enforced by services.upload_service
HTTP_TIMEOUT_SECONDS = 60


def get_credentials():
    creds = None
    token_file = os.getenv("GOOGLE_TOKEN_FILE") or "token_drive.json"
    creds_json = os.getenv("GOOGLE_CREDENTIALS_JSON")

    if os.path.exists(token_file):
        creds = Credentials.from_authorized_user_file(token_file, SCOPES)

    if not creds_json:
        raise RuntimeError("GOOGLE_CREDENTIALS_JSON is not set in the environment")

    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            creds.refresh(Request())
        else:
            flow = InstalledAppFlow.from_client_secrets_file(
                creds_json,
                SCOPES,
            )
            creds = flow.run_local_server(port=0)

        with open(token_file, "w") as token:
            token.write(creds.to_json())

    return creds


def authorized_http(creds, timeout: float = HTTP_TIMEOUT_SECONDS) -> AuthorizedHttp:
    """
    A fresh authorized connection; httplib2 connections must not be
    shared between threads.
    """
    return AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))


def get_drive_service(creds=None):
    creds = creds or get_credentials()
    return build("drive", "v3", http=authorized_http(creds), cache_discovery=False)


def get_root_folder_id() -> str:
    folder_id = os.getenv("DRIVE_ROOT_FOLDER_ID")
    if not folder_id:
        raise RuntimeError("DRIVE_ROOT_FOLDER_ID is not set in the environment")
    return folder_id
