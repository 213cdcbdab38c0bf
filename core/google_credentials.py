"""Validation of the Google service account file used by the remote store."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, Mapping

__all__ = [
    "CredentialsFileInvalidError",
    "REQUIRED_FIELDS",
    "ensure_service_account_file",
    "load_service_account_data",
]


class CredentialsFileInvalidError(Exception):
    """Raised when a service account JSON file is unreadable or incomplete."""


REQUIRED_FIELDS: Iterable[str] = (
    "type",
    "project_id",
    "private_key_id",
    "private_key",
    "client_email",
    "client_id",
    "token_uri",
)


def _normalise_private_key(key: str) -> str:
    # Keys pasted through env files often arrive with literal "\n" sequences.
    key = key.replace("\r\n", "\n").replace("\r", "\n").replace("\\n", "\n")
    if not key.endswith("\n"):
        key += "\n"
    return key


def _read_payload(path: Path) -> Mapping[str, object]:
    try:
        raw = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise CredentialsFileInvalidError(f"Could not read credentials file: {exc}") from exc

    text = raw.lstrip("\ufeff").strip()
    if not text:
        raise CredentialsFileInvalidError("Credentials file is empty.")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CredentialsFileInvalidError(f"Credentials file is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, Mapping):
        raise CredentialsFileInvalidError("Credentials file must contain a JSON object.")
    return payload


def _validate(payload: Mapping[str, object]) -> Dict[str, object]:
    data: Dict[str, object] = dict(payload)
    missing = [
        field
        for field in REQUIRED_FIELDS
        if not isinstance(data.get(field), str) or not str(data.get(field)).strip()
    ]
    if data.get("type") != "service_account" and "type" not in missing:
        missing.append("type")

    if missing:
        raise CredentialsFileInvalidError(
            "Credentials JSON missing fields: " + ", ".join(sorted(set(missing)))
        )

    data["private_key"] = _normalise_private_key(str(data["private_key"]))
    return data


def load_service_account_data(path: Path) -> Dict[str, object]:
    """Return validated service account data without modifying ``path``."""

    return _validate(_read_payload(Path(path)))


def ensure_service_account_file(path: Path) -> Dict[str, object]:
    """Validate ``path`` and rewrite it with the normalised payload."""

    payload = load_service_account_data(path)
    with Path(path).open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    return payload
