import base64
import binascii
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Set

import requests

import firebase_admin
from google.auth.exceptions import RefreshError
from google.auth.transport import requests as google_requests
from google.oauth2 import service_account
from firebase_admin import auth as admin_auth
from firebase_admin import credentials
from firebase_admin import firestore

from .config import Settings

logger = logging.getLogger("firebase")

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
X509_METADATA_URL = "https://www.googleapis.com/service_accounts/v1/metadata/x509/{email}"


@dataclass
class FirebaseClients:
    """Handles built once at process start and passed to every component."""

    app: firebase_admin.App
    db: Any

    def verify_id_token(self, token: str) -> Dict[str, Any]:
        return admin_auth.verify_id_token(token, app=self.app)


def _decode_inline_account(value: str) -> Dict[str, Any]:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(base64.b64decode(value, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(
            "FIREBASE_SERVICE_ACCOUNT_PATH is neither a readable file, JSON, nor base64 JSON"
        ) from exc


def read_service_account(value: str) -> Dict[str, Any]:
    """Load a service account from a file path, inline JSON or base64 JSON.

    Private keys pasted through env files often carry literal ``\\n``; those are
    turned back into newlines.
    """
    value = (value or "").strip()
    if not value:
        raise ValueError("FIREBASE_SERVICE_ACCOUNT_PATH is empty")

    path = Path(value).expanduser()
    if path.is_file():
        try:
            info = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValueError(f"Service account file is not valid JSON: {path}") from exc
    elif value.endswith(".json") or "/" in value or "\\" in value:
        raise ValueError(f"Service account file not found: {path}")
    else:
        info = _decode_inline_account(value)

    info = dict(info)
    for key in ("client_email", "project_id", "private_key_id"):
        if isinstance(info.get(key), str):
            info[key] = info[key].strip()
    key_pem = info.get("private_key")
    if isinstance(key_pem, str):
        info["private_key"] = key_pem.strip().replace("\\n", "\n") + "\n"
    return info


def _published_key_ids(client_email: str) -> Set[str]:
    if not client_email:
        return set()
    try:
        response = requests.get(X509_METADATA_URL.format(email=client_email), timeout=10)
        response.raise_for_status()
        return set(response.json())
    except (requests.RequestException, ValueError, TypeError):
        return set()


def check_service_account(info: Dict[str, Any]) -> None:
    """Fail at startup when the key can no longer mint access tokens.

    FCM sends and Firestore reads would otherwise only fail on first use.
    """
    creds = service_account.Credentials.from_service_account_info(
        info, scopes=[CLOUD_PLATFORM_SCOPE]
    )
    try:
        creds.refresh(google_requests.Request())
    except RefreshError as exc:
        email = info.get("client_email") or "<unknown>"
        key_id = info.get("private_key_id") or "<unknown>"
        message = f"Service account {email} (key {key_id}) could not refresh: {exc}"
        if "invalid_grant" in str(exc).lower() or "invalid jwt signature" in str(exc).lower():
            published = _published_key_ids(email)
            if published and key_id not in published:
                message = f"{message}. Key is revoked; published keys: {', '.join(sorted(published))}"
        raise RuntimeError(message) from exc


def _build_credentials(settings: Settings) -> credentials.Base:
    if not (settings.firebase_service_account_path or "").strip():
        logger.info("No service account configured, using application default credentials")
        return credentials.ApplicationDefault()
    info = read_service_account(settings.firebase_service_account_path)
    check_service_account(info)
    return credentials.Certificate(info)


def build_firebase_clients(settings: Settings) -> FirebaseClients:
    options: Dict[str, Any] = {}
    if settings.firebase_project_id:
        options["projectId"] = settings.firebase_project_id
    try:
        app = firebase_admin.get_app(settings.firebase_app_name)
    except ValueError:
        app = firebase_admin.initialize_app(
            _build_credentials(settings), options, name=settings.firebase_app_name
        )
    logger.info(
        "Firebase app %s initialized for project %s",
        app.name,
        app.project_id or "<default>",
    )
    return FirebaseClients(app=app, db=firestore.client(app=app))
