# publish.py
from __future__ import annotations

import json
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from .model import ArtifactSet, TriggerEvent


GITHUB_API = "https://api.github.com"
GITHUB_UPLOADS = "https://uploads.github.com"
ASSETS_PER_PAGE = 100


class PublishError(Exception):
    """Raised when release assets cannot be uploaded."""
    pass


class DirectoryPublisher:
    """
    Publish release assets into a local directory:

      root/
        <tag or release id>/
          <archive>
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def release_dir(self, event: TriggerEvent) -> Path:
        name = event.tag or (str(event.release_id) if event.release_id is not None else "unreleased")
        d = self.root / name
        d.mkdir(parents=True, exist_ok=True)
        return d

    def publish(self, artifacts: ArtifactSet, event: TriggerEvent) -> list[str]:
        dest = self.release_dir(event) / artifacts.archive.name
        # same-name asset is replaced; other targets' assets are untouched
        tmp = dest.with_name(dest.name + ".tmp")
        shutil.copyfile(artifacts.archive, tmp)
        tmp.replace(dest)
        return [str(dest)]


class GitHubReleasePublisher:
    """Upload release assets through the GitHub REST API."""

    def __init__(
        self,
        token: str,
        repository: str,
        release_id: int,
        *,
        api_url: str = GITHUB_API,
        uploads_url: str = GITHUB_UPLOADS,
    ):
        """
        Args:
            token: Repository-scoped token allowed to write release assets
            repository: "owner/name"
            release_id: Numeric id of the release the assets belong to
        """
        if not token:
            raise PublishError("GITHUB_TOKEN is required to upload release assets")
        if not repository or "/" not in repository:
            raise PublishError(f"repository must look like 'owner/name', got {repository!r}")
        self.token = token
        self.repository = repository
        self.release_id = release_id
        self.api_url = api_url.rstrip("/")
        self.uploads_url = uploads_url.rstrip("/")

    def _request(
        self,
        method: str,
        url: str,
        data: Optional[bytes] = None,
        content_type: str = "application/json",
    ) -> object:
        req_headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if data is not None:
            req_headers["Content-Type"] = content_type

        req = urllib.request.Request(url, data=data, headers=req_headers, method=method)

        try:
            with urllib.request.urlopen(req) as response:
                body = response.read().decode("utf-8")
                if body:
                    return json.loads(body)
                return {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise PublishError(f"GitHub API request failed: {e.code} {e.reason}. {error_body}")
        except urllib.error.URLError as e:
            raise PublishError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise PublishError(f"Invalid JSON response: {e}")

    def list_assets(self) -> list[dict]:
        """All assets of the release, one page at a time until a short page."""
        assets: list[dict] = []
        page = 1
        while True:
            url = (
                f"{self.api_url}/repos/{self.repository}/releases/{self.release_id}/assets"
                f"?per_page={ASSETS_PER_PAGE}&page={page}"
            )
            batch = self._request("GET", url)
            if not isinstance(batch, list):
                break
            assets.extend(batch)
            if len(batch) < ASSETS_PER_PAGE:
                break
            page += 1
        return assets

    def delete_asset(self, asset_id: int) -> None:
        self._request("DELETE", f"{self.api_url}/repos/{self.repository}/releases/assets/{asset_id}")

    def publish(self, artifacts: ArtifactSet, event: TriggerEvent) -> list[str]:
        name = artifacts.archive.name

        # re-running a target replaces its own asset only
        for asset in self.list_assets():
            if asset.get("name") == name:
                self.delete_asset(asset["id"])

        content_type = "application/zip" if name.endswith(".zip") else "application/gzip"
        url = (
            f"{self.uploads_url}/repos/{self.repository}/releases/{self.release_id}/assets"
            f"?name={quote(name)}"
        )
        uploaded = self._request("POST", url, data=artifacts.archive.read_bytes(), content_type=content_type)
        if isinstance(uploaded, dict) and uploaded.get("browser_download_url"):
            return [uploaded["browser_download_url"]]
        return [name]
