# github.py
from __future__ import annotations

import json
import mimetypes
import urllib.error
import urllib.request
from pathlib import Path
from typing import Optional, Sequence
from urllib.parse import quote, urljoin

from .ui.console import get_console


class APIError(Exception):
    """Raised when API requests fail."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class GitHubReleaseClient:
    """Release sink that creates a GitHub Release and uploads its assets."""

    def __init__(self, repository: str, token: str, base_url: str = "https://api.github.com"):
        """
        Args:
            repository: "owner/name"
            token: token with contents:write on the repository
            base_url: REST API root (GitHub Enterprise has its own)
        """
        if "/" not in repository:
            raise ValueError(f"repository must be 'owner/name', got {repository!r}")
        self.repository = repository
        self.token = token
        self.base_url = base_url.rstrip("/")

    def _request(
        self,
        method: str,
        url: str,
        data: Optional[bytes] = None,
        content_type: str = "application/json",
    ) -> dict:
        """
        Make an HTTP request to the API.

        Returns:
            Parsed JSON response as dictionary

        Raises:
            APIError: If the request fails
        """
        if not url.startswith("http"):
            url = urljoin(self.base_url + "/", url.lstrip("/"))

        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
            "X-GitHub-Api-Version": "2022-11-28",
            "Content-Type": content_type,
        }
        req = urllib.request.Request(url, data=data, headers=headers, method=method)

        try:
            with urllib.request.urlopen(req) as response:
                body = response.read().decode("utf-8")
                return json.loads(body) if body else {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"API request failed: {e.code} {e.reason}. {error_body}", status=e.code)
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")

    def _release_url(self, release: dict) -> str:
        return f"/repos/{self.repository}/releases/{release['id']}"

    def create(self, tag: str) -> dict:
        # drafts stay invisible until publish()
        payload = {"tag_name": tag, "name": tag, "draft": True, "prerelease": False}
        return self._request(
            "POST",
            f"/repos/{self.repository}/releases",
            data=json.dumps(payload).encode("utf-8"),
        )

    def upload(self, release: dict, path: Path) -> dict:
        # upload_url looks like https://uploads.github.com/.../assets{?name,label}
        upload_url = release["upload_url"].split("{", 1)[0]
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return self._request(
            "POST",
            f"{upload_url}?name={quote(path.name)}",
            data=path.read_bytes(),
            content_type=content_type,
        )

    def publish(self, release: dict) -> dict:
        return self._request(
            "PATCH",
            self._release_url(release),
            data=json.dumps({"draft": False}).encode("utf-8"),
        )

    def delete(self, release: dict) -> None:
        self._request("DELETE", self._release_url(release))

    def create_release(self, tag: str, files: Sequence[Path]) -> bool:
        """Draft, upload every asset, then publish. A failed upload deletes the draft."""
        console = get_console()
        try:
            release = self.create(tag)
        except APIError as e:
            console.print_error("Release failed", f"{self.repository} {tag}", details=[str(e)])
            return False

        try:
            for f in files:
                self.upload(release, Path(f))
            published = self.publish(release)
        except (APIError, OSError) as e:
            console.print_error("Release failed", f"{self.repository} {tag}: draft discarded", details=[str(e)])
            try:
                self.delete(release)
            except APIError as cleanup:
                console.print_error("Draft not deleted", f"{self.repository} {tag}", details=[str(cleanup)])
            return False

        console.print_info(f"Release {tag}: {published.get('html_url', '')}")
        return True
