from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional

import requests

from migration_backup.config import DEFAULT_API_URL, ConfigurationError

LOG = logging.getLogger(__name__)

API_VERSION_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}
USER_AGENT = "migration-backup"
PAGE_SIZE = 100
REQUEST_TIMEOUT = 30
# Archives can be several GB; only the connect phase gets the short timeout.
DOWNLOAD_TIMEOUT = (REQUEST_TIMEOUT, 300)
CHUNK_SIZE = 1024 * 1024


class GitHubAPI:
    """Token-authenticated access to the GitHub REST API.

    Responses with an error status are logged together with their body and
    raised as :class:`requests.HTTPError`.
    """

    def __init__(
        self,
        token: Optional[str],
        base_url: str = DEFAULT_API_URL,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not token:
            raise ConfigurationError(
                "No GitHub token configured; set GITHUB_TOKEN to a personal access token "
                "with the `repo` and `admin:org` scopes."
            )
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(API_VERSION_HEADERS)
        self.session.headers["Authorization"] = f"Bearer {token}"
        self.session.headers["User-Agent"] = USER_AGENT

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", REQUEST_TIMEOUT)
        response = self.session.request(method, url, **kwargs)
        if not response.ok:
            LOG.error("%s %s returned %s: %s", method, url, response.status_code, response.text)
            response.close()
            response.raise_for_status()
        return response

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request("GET", self.url_for(path), params=params).json()

    def post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", self.url_for(path), json=payload).json()

    def iterate(self, path: str, params: Optional[Dict[str, Any]] = None) -> Iterable[Dict[str, Any]]:
        """Yield every item of a paginated listing, following ``rel="next"`` links."""
        url: Optional[str] = self.url_for(path)
        page_params: Optional[Dict[str, Any]] = {**(params or {}), "per_page": PAGE_SIZE}

        while url:
            response = self.request("GET", url, params=page_params)
            yield from response.json()
            url = response.links.get("next", {}).get("url")
            # Next links carry their own query string.
            page_params = None

    @contextmanager
    def stream(self, path: str) -> Iterator[Iterator[bytes]]:
        """Yield the response body of ``path`` in chunks.

        Redirects are followed; requests drops the Authorization header when
        the redirect leaves the API host, which the pre-signed archive URLs
        require.
        """
        response = self.request("GET", self.url_for(path), stream=True, timeout=DOWNLOAD_TIMEOUT)
        with response:
            yield response.iter_content(chunk_size=CHUNK_SIZE)
