import logging
import threading
from datetime import datetime
from email.utils import parsedate_to_datetime
from urllib.parse import quote, unquote, urlparse
from xml.etree import ElementTree

import requests

from ..config import RemoteConfig
from ..exceptions import ConnectivityError, RemoteStoreError
from .base import RemoteEntry

logger = logging.getLogger(__name__)

_DAV_NS = "{DAV:}"

_PROPFIND_BODY = """<?xml version="1.0" encoding="utf-8" ?>
<D:propfind xmlns:D="DAV:">
  <D:prop>
    <D:getlastmodified/>
    <D:getcontentlength/>
    <D:resourcetype/>
  </D:prop>
</D:propfind>"""


class WebDAVStore:
    def __init__(self, config: RemoteConfig):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = self._get_base_url()
        self._base_path = unquote(urlparse(self.base_url).path).rstrip("/")

    @property
    def session(self) -> requests.Session:
        """Current thread's session."""
        return self._get_session()

    def _get_base_url(self) -> str:
        url = self.config.url.rstrip("/")
        root = self.config.remote_root.strip("/")
        if root:
            url = f"{url}/{quote(root)}"
        return url

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.auth = (self.config.username, self.config.password)
        session.verify = not self.config.insecure
        return session

    def _url(self, path: str) -> str:
        path = path.strip("/")
        if not path:
            return f"{self.base_url}/"
        return f"{self.base_url}/{quote(path)}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """
        Send one WebDAV request, translating transport and auth failures.
        """
        try:
            response = self._get_session().request(
                method,
                self._url(path),
                timeout=(self.config.connect_timeout, self.config.read_timeout),
                **kwargs,
            )
        except requests.ConnectionError as exc:
            raise ConnectivityError(
                f"WebDAV server unreachable: {exc}"
            ) from exc
        except requests.RequestException as exc:
            raise RemoteStoreError(
                f"WebDAV {method} {path or '/'} failed: {exc}"
            ) from exc

        if response.status_code in (401, 403):
            raise ConnectivityError(
                f"WebDAV authentication rejected ({response.status_code})"
            )
        return response

    def test_connection(self) -> None:
        """
        Check the configured root with a Depth 0 PROPFIND.
        """
        response = self._request("PROPFIND", "", headers={"Depth": "0"})
        if response.status_code == 404:
            # Root collection is created by ensure_directory
            logger.info("WebDAV root %s does not exist yet", self.base_url)
            return
        if response.status_code not in (200, 207):
            raise ConnectivityError(
                f"WebDAV connection check failed: {response.status_code} {response.reason}"
            )
        logger.debug("WebDAV connection verified: %s", self.base_url)

    def list(self, prefix: str = "") -> list[RemoteEntry]:
        """
        Recursively list documents below prefix (one Depth 1 PROPFIND per collection).
        """
        entries: list[RemoteEntry] = []
        pending = [prefix.strip("/")]
        seen: set[str] = set()
        while pending:
            collection = pending.pop()
            if collection in seen:
                continue
            seen.add(collection)
            for rel, entry, is_dir in self._propfind(collection):
                if is_dir:
                    if rel and rel != collection:
                        pending.append(rel)
                else:
                    entries.append(entry)
        return sorted(entries, key=lambda e: e.path)

    def _propfind(self, collection: str):
        response = self._request(
            "PROPFIND",
            collection,
            headers={
                "Depth": "1",
                "Content-Type": "application/xml; charset=utf-8",
            },
            data=_PROPFIND_BODY.encode("utf-8"),
        )
        if response.status_code == 404:
            return []
        if response.status_code not in (200, 207):
            raise RemoteStoreError(
                f"WebDAV listing of '{collection or '/'}' failed: {response.status_code}"
            )
        return self._parse_multistatus(response.content)

    def _parse_multistatus(self, content: bytes):
        """
        Parse a 207 Multi-Status body into (relative_path, entry, is_dir) tuples.
        """
        try:
            tree = ElementTree.fromstring(content)
        except ElementTree.ParseError as exc:
            raise RemoteStoreError(
                f"Malformed PROPFIND response: {exc}"
            ) from exc

        results = []
        for response in tree.findall(f"{_DAV_NS}response"):
            href_element = response.find(f"{_DAV_NS}href")
            if href_element is None or not href_element.text:
                continue
            rel = self._relative_path(href_element.text)
            if rel is None:
                continue

            prop = response.find(f".//{_DAV_NS}prop")
            is_dir = False
            size = None
            last_modified = None
            if prop is not None:
                is_dir = (
                    prop.find(f"{_DAV_NS}resourcetype/{_DAV_NS}collection")
                    is not None
                )
                length = prop.find(f"{_DAV_NS}getcontentlength")
                if length is not None and length.text:
                    size = int(length.text)
                modified = prop.find(f"{_DAV_NS}getlastmodified")
                if modified is not None and modified.text:
                    last_modified = _parse_http_date(modified.text)

            results.append(
                (rel, RemoteEntry(rel, size, last_modified), is_dir)
            )
        return results

    def _relative_path(self, href: str) -> str | None:
        path = unquote(urlparse(href).path).rstrip("/")
        if not path.startswith(self._base_path):
            return None
        return path[len(self._base_path) :].strip("/")

    def upload(self, path: str, data: bytes) -> None:
        parent = path.rsplit("/", 1)[0] if "/" in path else ""
        if parent:
            self.ensure_directory(parent)

        content_type = (
            "application/json; charset=utf-8"
            if path.endswith(".json")
            else "application/octet-stream"
        )
        response = self._request(
            "PUT", path, data=data, headers={"Content-Type": content_type}
        )
        if response.status_code not in (200, 201, 204):
            raise RemoteStoreError(
                f"Upload of {path} failed: {response.status_code} {response.reason}"
            )
        logger.debug("Uploaded %s (%d bytes)", path, len(data))

    def download(self, path: str) -> bytes | None:
        response = self._request("GET", path)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise RemoteStoreError(
                f"Download of {path} failed: {response.status_code} {response.reason}"
            )
        return response.content

    def delete(self, path: str) -> None:
        response = self._request("DELETE", path)
        if response.status_code not in (200, 202, 204, 404):
            raise RemoteStoreError(
                f"Delete of {path} failed: {response.status_code} {response.reason}"
            )
        logger.debug("Deleted remote %s", path)

    def copy(self, source: str, destination: str) -> None:
        parent = destination.rsplit("/", 1)[0] if "/" in destination else ""
        if parent:
            self.ensure_directory(parent)
        response = self._request(
            "COPY",
            source,
            headers={"Destination": self._url(destination), "Overwrite": "T"},
        )
        if response.status_code not in (200, 201, 204):
            raise RemoteStoreError(
                f"Copy of {source} to {destination} failed: "
                f"{response.status_code} {response.reason}"
            )
        logger.debug("Copied %s to %s", source, destination)

    def exists(self, path: str) -> bool:
        response = self._request("HEAD", path)
        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise RemoteStoreError(
                f"Existence check of {path} failed: {response.status_code}"
            )
        return True

    def ensure_directory(self, path: str) -> None:
        """
        Create path and its parents (and the remote root) with MKCOL.
        """
        segments = [s for s in path.strip("/").split("/") if s]
        root_segments = [
            s for s in self.config.remote_root.strip("/").split("/") if s
        ]

        # The remote root itself lives above base_url, create it relative to the server URL
        server = self.config.url.rstrip("/")
        created = ""
        for segment in root_segments:
            created = f"{created}/{quote(segment)}"
            self._mkcol(f"{server}{created}/")

        current = ""
        for segment in segments:
            current = f"{current}/{segment}" if current else segment
            self._mkcol(f"{self._url(current)}/")

    def _mkcol(self, url: str) -> None:
        try:
            response = self._get_session().request(
                "MKCOL",
                url,
                timeout=(self.config.connect_timeout, self.config.read_timeout),
            )
        except requests.RequestException as exc:
            raise RemoteStoreError(f"MKCOL {url} failed: {exc}") from exc
        # 405: already exists
        if response.status_code not in (200, 201, 405):
            if response.status_code in (401, 403):
                raise ConnectivityError(
                    f"WebDAV authentication rejected ({response.status_code})"
                )
            raise RemoteStoreError(
                f"MKCOL {url} failed: {response.status_code} {response.reason}"
            )


def _parse_http_date(value: str) -> datetime | None:
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
