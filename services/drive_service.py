# services/drive_service.py
import io
from typing import Dict, List, Optional

from googleapiclient.discovery import Resource
from googleapiclient.http import HttpRequest, MediaIoBaseUpload

FOLDER_MIMETYPE = "application/vnd.google-apps.folder"


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def find_file_in_folder_by_name(
    drive: Resource,
    folder_id: str,
    filename: str,
    mimetype: Optional[str] = None,
) -> Optional[Dict]:
    query = (
        f"name = '{_quote(filename)}' and "
        f"'{folder_id}' in parents and "
        f"trashed = false"
    )
    if mimetype:
        query += f" and mimeType = '{mimetype}'"

    resp = drive.files().list(
        q=query,
        fields="files(id, name, mimeType)",
        pageSize=1,
    ).execute()

    files: List[Dict] = resp.get("files", [])
    return files[0] if files else None


def ensure_folder(drive: Resource, parent_id: str, name: str) -> str:
    existing = find_file_in_folder_by_name(drive, parent_id, name, FOLDER_MIMETYPE)
    if existing:
        return existing["id"]

    folder = drive.files().create(
        body={
            "name": name,
            "mimeType": FOLDER_MIMETYPE,
            "parents": [parent_id],
        },
        fields="id",
    ).execute()
    return folder["id"]


def ensure_folder_path(drive: Resource, root_folder_id: str, path: str) -> str:
    """
    Resolve a slash separated path like "wareneingaenge/lieferscheine"
    below the root folder, creating missing folders on the way.
    """
    folder_id = root_folder_id
    for segment in (s for s in path.split("/") if s):
        folder_id = ensure_folder(drive, folder_id, segment)
    return folder_id


def create_resumable_upload(
    drive: Resource,
    folder_id: str,
    filename: str,
    mimetype: str,
    media_stream: io.IOBase,
    chunksize: int,
) -> HttpRequest:
    """
    Prepare a chunked upload. Nothing is sent until the caller drives
    the request with next_chunk().
    """
    media = MediaIoBaseUpload(
        media_stream,
        mimetype=mimetype,
        chunksize=chunksize,
        resumable=True,
    )

    metadata = {
        "name": filename,
        "parents": [folder_id],
    }

    return drive.files().create(
        body=metadata,
        media_body=media,
        fields="id",
    )


def ensure_file_public_and_get_url(drive: Resource, file_id: str) -> str:
    """
    Make the file readable by anyone with the link and return a direct download URL.
    """
    drive.permissions().create(
        fileId=file_id,
        body={"type": "anyone", "role": "reader"},
        fields="id",
    ).execute()

    return f"https://drive.google.com/uc?id={file_id}&export=download"
