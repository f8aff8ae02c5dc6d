"""
HTTP fetcher — the single place nodestrap reads from the network.

Release feeds, stable-version pointers, systemd units, manifests and
binary archives all come through here.  Every failure surfaces as
``FetchError``; callers translate it into their own error kind.
"""

from __future__ import annotations

import json
import logging
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

from nodestrap import __version__
from nodestrap.core.errors import FetchError

logger = logging.getLogger(__name__)

_USER_AGENT = f"nodestrap/{__version__}"


class HttpFetcher:
    """Thin urllib wrapper with a fixed User-Agent and timeout."""

    def __init__(self, timeout: float = 30.0, download_timeout: float = 300.0):
        self.timeout = timeout
        self.download_timeout = download_timeout

    def _open(self, url: str, *, accept: str | None, timeout: float):
        headers = {"User-Agent": _USER_AGENT}
        if accept:
            headers["Accept"] = accept
        req = urllib.request.Request(url, headers=headers)
        return urllib.request.urlopen(req, timeout=timeout)

    def get_bytes(self, url: str, *, accept: str | None = None) -> bytes:
        logger.debug("GET %s", url)
        try:
            with self._open(url, accept=accept, timeout=self.timeout) as resp:
                return resp.read()
        except urllib.error.HTTPError as e:
            raise FetchError(f"GET {url} failed: HTTP {e.code} {e.reason}") from e
        except (urllib.error.URLError, OSError) as e:
            raise FetchError(f"GET {url} failed: {e}") from e

    def get_text(self, url: str) -> str:
        return self.get_bytes(url).decode("utf-8", errors="replace")

    def get_json(self, url: str) -> Any:
        body = self.get_bytes(url, accept="application/vnd.github+json, application/json")
        try:
            return json.loads(body)
        except ValueError as e:
            raise FetchError(f"GET {url} returned invalid JSON: {e}") from e

    def download(self, url: str, dest: Path) -> Path:
        """Stream ``url`` into ``dest`` (parent directories are created)."""
        logger.info("Downloading %s", url)
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._open(url, accept=None, timeout=self.download_timeout) as resp:
                with open(dest, "wb") as f:
                    shutil.copyfileobj(resp, f, length=64 * 1024)
        except urllib.error.HTTPError as e:
            dest.unlink(missing_ok=True)
            raise FetchError(f"Download of {url} failed: HTTP {e.code} {e.reason}") from e
        except (urllib.error.URLError, OSError) as e:
            dest.unlink(missing_ok=True)
            raise FetchError(f"Download of {url} failed: {e}") from e
        logger.debug("Downloaded %s → %s (%d bytes)", url, dest, dest.stat().st_size)
        return dest
