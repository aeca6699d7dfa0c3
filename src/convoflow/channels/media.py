"""Inbound media download.

WhatsApp media is addressed by id: the Graph API resolves the id to a
short-lived URL that must be downloaded with the same bearer token.
Instagram and Facebook attachments already carry a downloadable URL.
"""

from __future__ import annotations

import requests

from convoflow.pipeline.collaborators import MediaFile

from .whatsapp import GRAPH_BASE_URL, WhatsAppConfig

DOWNLOAD_TIMEOUT = 30
MAX_MEDIA_BYTES = 100 * 1024 * 1024

_DEFAULT_MIME = "application/octet-stream"


def _download(session: requests.Session, url: str, headers: dict[str, str]) -> MediaFile:
    response = session.get(url, headers=headers, timeout=DOWNLOAD_TIMEOUT, stream=True)
    response.raise_for_status()
    chunks = []
    size = 0
    for chunk in response.iter_content(chunk_size=64 * 1024):
        size += len(chunk)
        if size > MAX_MEDIA_BYTES:
            response.close()
            raise ValueError("media exceeds size limit")
        chunks.append(chunk)
    mime_type = response.headers.get("Content-Type", _DEFAULT_MIME)
    return MediaFile(content=b"".join(chunks), mime_type=mime_type)


class WhatsAppMediaFetcher:
    """MediaFetcher resolving WhatsApp media ids through the Graph API."""

    def __init__(self, config: WhatsAppConfig, session: requests.Session | None = None) -> None:
        self._config = config
        self._session = session or requests.Session()

    def resolve_url(self, media_id: str) -> tuple[str, str]:
        """Return (download_url, mime_type) for a media id."""
        response = self._session.get(
            f"{GRAPH_BASE_URL}/{self._config.api_version}/{media_id}",
            headers=self._auth_headers(),
            timeout=DOWNLOAD_TIMEOUT,
        )
        response.raise_for_status()
        body = response.json()
        url = body.get("url")
        if not url:
            raise ValueError("media url missing from graph response")
        return url, body.get("mime_type") or _DEFAULT_MIME

    def fetch(self, reference: str) -> MediaFile:
        url, mime_type = self.resolve_url(reference)
        media = _download(self._session, url, self._auth_headers())
        # Graph metadata is more precise than the CDN content type
        return MediaFile(content=media.content, mime_type=mime_type)

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._config.access_token}"}


class UrlMediaFetcher:
    """MediaFetcher for references that are already public URLs."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()

    def fetch(self, reference: str) -> MediaFile:
        return _download(self._session, reference, {})
