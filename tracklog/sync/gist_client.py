"""Remote copy of the dataset stored as a file inside a GitHub Gist."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping

from ..config import SyncConfig
from ..errors import NotConfiguredError, RemoteDocumentError, TrackerError
from ..models import Dataset
from ..schemas import GIST_RESPONSE_SCHEMA, validate_dataset, validate_document
from .http_client import NetworkClient

logger = logging.getLogger(__name__)

GIST_DESCRIPTION = "Personal Activity & Food Tracker Data"


@dataclass
class PushResult:
    """Outcome of a successful push."""

    written: Dataset
    confirmed_deletions: dict[str, frozenset[str]] = field(default_factory=dict)
    timestamp: datetime | None = None

    @property
    def deletions_confirmed(self) -> int:
        return sum(len(ids) for ids in self.confirmed_deletions.values())


class GistClient:
    """Typed load/push/backup operations against the sync document.

    Transport errors from the NetworkClient propagate unchanged.
    """

    def __init__(self, config: SyncConfig, network: NetworkClient | None = None):
        """Initialize the client.

        Args:
            config: Sync settings (token, document ids, API base).
            network: Network client; built from config if omitted.
        """
        self.config = config
        self.network = network or NetworkClient(
            max_retries=config.max_retries,
            backoff_seconds=config.backoff_seconds,
            timeout=config.timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def _headers(self, token: str | None = None) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token or self.config.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _url(self, path: str) -> str:
        return f"{self.config.api_base.rstrip('/')}{path}"

    def _require(self, gist_id: str | None, what: str) -> str:
        if not self.config.token or not gist_id:
            raise NotConfiguredError(f"Token and {what} are required")
        return gist_id

    async def _fetch(self, gist_id: str) -> Dataset:
        gist = await self.network.request(
            "GET", self._url(f"/gists/{gist_id}"), headers=self._headers()
        )
        valid, error = validate_document(gist, GIST_RESPONSE_SCHEMA, "gist response")
        if not valid:
            raise RemoteDocumentError(error)

        file = gist["files"].get(self.config.filename)
        if not file or not file.get("content"):
            logger.info(f"Gist {gist_id} has no {self.config.filename}, treating as empty")
            return Dataset()

        try:
            raw = json.loads(file["content"])
        except json.JSONDecodeError as e:
            raise RemoteDocumentError(f"Remote document is not JSON: {e}") from e

        valid, error = validate_dataset(raw, "remote document")
        if not valid:
            raise RemoteDocumentError(
                f"Remote data failed validation, refusing to use it. {error}"
            )
        return Dataset.from_dict(raw)

    async def _write(self, gist_id: str, data: Dataset) -> None:
        await self.network.request(
            "PATCH",
            self._url(f"/gists/{gist_id}"),
            headers=self._headers(),
            body={
                "files": {
                    self.config.filename: {
                        "content": json.dumps(data.to_dict(), indent=2),
                    }
                }
            },
        )

    async def load(self) -> Dataset:
        """Read the primary sync document."""
        gist_id = self._require(self.config.gist_id, "Gist ID")
        return await self._fetch(gist_id)

    async def push(
        self, data: Dataset, tombstones: Mapping[str, Iterable[str]]
    ) -> PushResult:
        """Overwrite the primary document with ``data`` minus tombstoned ids.

        Returns:
            PushResult naming the tombstones the written document reflects.
        """
        gist_id = self._require(self.config.gist_id, "Gist ID")
        confirmed = {kind: frozenset(ids) for kind, ids in tombstones.items()}
        payload = data.without(confirmed)

        await self._write(gist_id, payload)
        result = PushResult(
            written=payload,
            confirmed_deletions={k: v for k, v in confirmed.items() if v},
            timestamp=datetime.now(),
        )
        logger.info(
            f"Pushed {len(payload.entries)} entries to gist {gist_id}, "
            f"{result.deletions_confirmed} deletions applied"
        )
        return result

    async def backup(self, data: Dataset) -> None:
        """Write ``data`` to the backup document."""
        gist_id = self._require(self.config.backup_gist_id, "backup Gist ID")
        await self._write(gist_id, data)
        logger.info(f"Backed up {len(data.entries)} entries to gist {gist_id}")

    async def restore_from_backup(self) -> Dataset:
        """Read the backup document."""
        gist_id = self._require(self.config.backup_gist_id, "backup Gist ID")
        return await self._fetch(gist_id)

    async def create_document(self) -> str:
        """Create a private gist holding an empty dataset.

        Returns:
            The new gist id.
        """
        if not self.config.token:
            raise NotConfiguredError("Token is required")
        gist = await self.network.request(
            "POST",
            self._url("/gists"),
            headers=self._headers(),
            body={
                "description": GIST_DESCRIPTION,
                "public": False,
                "files": {
                    self.config.filename: {
                        "content": json.dumps(Dataset().to_dict(), indent=2),
                    }
                },
            },
        )
        if not isinstance(gist, dict) or not isinstance(gist.get("id"), str):
            raise RemoteDocumentError("Gist creation response has no id")
        logger.info(f"Created gist {gist['id']}")
        return gist["id"]

    async def list_documents(self) -> list[dict[str, Any]]:
        """List the user's gists as id, description and file names."""
        if not self.config.token:
            raise NotConfiguredError("Token is required")
        gists = await self.network.request(
            "GET", self._url("/gists"), headers=self._headers()
        )
        if not isinstance(gists, list):
            raise RemoteDocumentError("Gist list response is not a list")
        return [
            {
                "id": gist.get("id", ""),
                "description": gist.get("description") or "No description",
                "files": list((gist.get("files") or {}).keys()),
            }
            for gist in gists
            if isinstance(gist, dict)
        ]

    async def validate_credentials(self, token: str | None = None) -> bool:
        """Check that a token is accepted by the API.

        Never raises: any failure reads as False.
        """
        token = token if token is not None else self.config.token
        if not token:
            return False
        try:
            await self.network.request(
                "GET", self._url("/user"), headers=self._headers(token)
            )
            return True
        except TrackerError as e:
            logger.info(f"Token validation failed: {e}")
            return False
