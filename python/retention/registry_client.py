"""
Docker Registry HTTP API v2 client.

This module provides the registry operations the pruner needs (catalog, tag
listing, descriptors, manifests, config blobs and manifest deletion) over a
requests session, with rate limiting, retries for reads, HTTP basic auth and
Bearer token challenges.
"""

import hashlib
import re
import threading
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import requests
from requests.auth import HTTPBasicAuth

from retention import __version__
from retention.error_utils import ConnectivityError, DeleteError, FetchError
from retention.executor import Deleter
from retention.logging_utils import get_logger
from retention.models import TagDescriptor
from retention.retry_utils import RetryPolicy

logger = get_logger(__name__)

MANIFEST_MEDIA_TYPES = [
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
]

CATALOG_SCOPE = "registry:catalog:*"

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


def parse_bearer_challenge(header: Optional[str]) -> Optional[Dict[str, str]]:
    """Parse a ``WWW-Authenticate: Bearer realm="...",service="...",scope="..."`` header.

    Returns:
        The challenge parameters, or None if the header is not a Bearer challenge
    """
    if not header or not header.strip().lower().startswith("bearer"):
        return None
    params = dict(_CHALLENGE_PARAM.findall(header))
    if "realm" not in params:
        return None
    return params


def api_base(registry_url: str) -> str:
    """Return the ``.../v2/`` root for a registry URL.

    A URL that already points inside the API keeps its prefix; a ``/v1/`` path
    is mapped onto ``/v2/``.
    """
    parsed = urlparse(registry_url)
    path = parsed.path or ""
    if "/v2/" in path + "/":
        prefix = path[: (path + "/").index("/v2/")]
    elif "/v1/" in path + "/":
        prefix = path[: (path + "/").index("/v1/")]
    else:
        prefix = path.rstrip("/")
    return f"{parsed.scheme}://{parsed.netloc}{prefix}/v2/"


class TokenBucket:
    """Token bucket rate limiter shared by all worker threads."""

    def __init__(self, rate: float, burst: int):
        self.rate = rate
        self.burst = burst
        self._tokens = float(burst)
        self._last_update = time.time()
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """Acquire a token, waiting if necessary."""
        with self._lock:
            now = time.time()
            elapsed = now - self._last_update
            self._tokens = min(self.burst, self._tokens + elapsed * self.rate)
            self._last_update = now

            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return

            wait_time = (1.0 - self._tokens) / self.rate
            logger.debug(f"Rate limiting: waiting {wait_time:.2f}s (tokens: {self._tokens:.2f})")
            time.sleep(wait_time)
            self._tokens = 0.0
            self._last_update = time.time()


class RegistryClient(Deleter):
    """Registry API v2 client used by the catalog builder and the deletion executor."""

    def __init__(
        self,
        registry_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        insecure: bool = False,
        timeout: int = 60,
        retry: Optional[RetryPolicy] = None,
        rate_limit_enabled: bool = True,
        rate_limit_rps: float = 10.0,
        rate_limit_burst: int = 20,
        session: Optional[requests.Session] = None,
    ):
        """Initialize RegistryClient.

        Args:
            registry_url: Base URL of the registry, e.g. "https://registry.example.com"
            username: Username for basic auth and token requests (optional)
            password: Password for basic auth and token requests (optional)
            insecure: Skip TLS certificate verification
            timeout: Per-request timeout in seconds
            retry: Backoff for reads (deletes are never retried)
            session: Pre-built requests session (mainly for tests)
        """
        self.registry_url = registry_url.rstrip("/")
        self.base_url = api_base(self.registry_url)
        self.insecure = insecure
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self._basic_auth = HTTPBasicAuth(username, password or "") if username else None
        self._credentials = (username, password)
        self._tokens: Dict[str, str] = {}
        self._tokens_lock = threading.Lock()
        self._rate_limiter = TokenBucket(rate_limit_rps, rate_limit_burst) if rate_limit_enabled else None

        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = f"registry-retention/{__version__}"
        if insecure:
            requests.packages.urllib3.disable_warnings()

    @classmethod
    def from_config(cls, config_manager, username: Optional[str] = None, password: Optional[str] = None):
        """Build a client from a ConfigManager and already resolved credentials"""
        return cls(
            config_manager.get_registry_url(),
            username=username,
            password=password,
            insecure=config_manager.is_insecure(),
            timeout=config_manager.get_timeout(),
            retry=RetryPolicy.from_config(config_manager),
            rate_limit_enabled=config_manager.get_rate_limit_enabled(),
            rate_limit_rps=config_manager.get_rate_limit_rps(),
            rate_limit_burst=config_manager.get_rate_limit_burst(),
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    def _fetch_token(self, challenge: Dict[str, str]) -> str:
        """Exchange credentials (or nothing, for anonymous pulls) for a Bearer token."""
        params = {"service": challenge.get("service"), "scope": challenge.get("scope")}
        params = {key: value for key, value in params.items() if value}
        logger.debug(f"Requesting token from {challenge['realm']} (scope: {params.get('scope')})")
        response = self.session.get(
            challenge["realm"],
            params=params,
            auth=self._basic_auth,
            timeout=self.timeout,
            verify=not self.insecure,
        )
        response.raise_for_status()
        payload = response.json()
        token = payload.get("token") or payload.get("access_token")
        if not token:
            raise ValueError(f"Token endpoint {challenge['realm']} returned no token")
        return token

    def _request(self, method: str, path: str, resource: str, **kwargs) -> requests.Response:
        """Send one request, answering a Bearer challenge once if needed.

        Args:
            resource: Token cache key (repository name, or the catalog scope)
        """
        if self._rate_limiter is not None:
            self._rate_limiter.acquire()

        url = self._url(path)
        headers = dict(kwargs.pop("headers", None) or {})

        def send() -> requests.Response:
            with self._tokens_lock:
                token = self._tokens.get(resource)
            if token:
                headers["Authorization"] = f"Bearer {token}"
                auth = None
            else:
                auth = self._basic_auth
            return self.session.request(
                method, url, headers=headers, auth=auth, timeout=self.timeout, verify=not self.insecure, **kwargs
            )

        response = send()
        if response.status_code == 401:
            challenge = parse_bearer_challenge(response.headers.get("WWW-Authenticate"))
            if challenge is not None:
                token = self._fetch_token(challenge)
                with self._tokens_lock:
                    self._tokens[resource] = token
                response = send()
        return response

    def _get(self, path: str, resource: str, method: str = "GET", **kwargs) -> requests.Response:
        """GET (or HEAD) with retries; raises requests exceptions for failures."""

        def _execute() -> requests.Response:
            response = self._request(method, path, resource, **kwargs)
            response.raise_for_status()
            return response

        return self.retry.call(_execute, f"{method} {path or '/v2/'}")

    @staticmethod
    def _describe(error: Exception) -> str:
        response = getattr(error, "response", None)
        if response is not None:
            return f"HTTP {response.status_code} {response.reason or ''}".strip()
        return str(error)

    # ------------------------------------------------------------------
    # Registry operations
    # ------------------------------------------------------------------

    @staticmethod
    def _next_page(response) -> Optional[str]:
        """Path of the page named by a Link: rel="next" header, relative to /v2/"""
        next_link = response.links.get("next", {}).get("url")
        if next_link and "/v2/" in next_link:
            return next_link.split("/v2/", 1)[1]
        return next_link

    def ping(self) -> None:
        """Check that the registry is reachable and accepts our credentials.

        Raises:
            ConnectivityError: If the registry cannot be reached or authentication fails
        """
        logger.debug(f"Ping path is '{self.base_url}'")
        try:
            response = self._get("", CATALOG_SCOPE)
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code in (401, 403):
                raise ConnectivityError.rejected(self.registry_url, e)
            raise ConnectivityError.unreachable(self.registry_url, e)
        except (requests.RequestException, ValueError) as e:
            raise ConnectivityError.unreachable(self.registry_url, e)
        api_version = response.headers.get("Docker-Distribution-API-Version")
        logger.debug(f"Registry answered ping (API version: {api_version or 'unknown'})")

    def list_repositories(self, limit: int) -> List[str]:
        """List up to ``limit`` repository names, following catalog pagination.

        Raises:
            ConnectivityError: If the catalog cannot be fetched
        """
        repositories: List[str] = []
        path = f"_catalog?n={limit}"
        try:
            while path and len(repositories) < limit:
                response = self._get(path, CATALOG_SCOPE)
                repositories.extend(response.json().get("repositories") or [])
                path = self._next_page(response)
        except (requests.RequestException, ValueError) as e:
            raise ConnectivityError.unreachable(self.registry_url, e)
        return repositories[:limit]

    def list_tags(self, repository: str) -> List[str]:
        """List all tags of a repository, following tag list pagination.

        Raises:
            FetchError: If any page of the tag list cannot be fetched
        """
        tags: List[str] = []
        path = f"{repository}/tags/list"
        try:
            while path:
                response = self._get(path, repository)
                tags.extend(response.json().get("tags") or [])
                path = self._next_page(response)
            return tags
        except requests.RequestException as e:
            raise FetchError(repository, None, f"could not list tags ({self._describe(e)})", self._status(e))
        except ValueError as e:
            raise FetchError(repository, None, f"invalid tag list: {e}")

    def get_tag_descriptor(self, repository: str, tag: str) -> TagDescriptor:
        """Resolve a tag to the digest of its manifest.

        Raises:
            FetchError: If the tag disappeared or the registry returned a non-success status
        """
        headers = {"Accept": ", ".join(MANIFEST_MEDIA_TYPES)}
        try:
            response = self._get(f"{repository}/manifests/{tag}", repository, method="HEAD", headers=headers)
            digest = response.headers.get("Docker-Content-Digest")
            if not digest:
                response = self._get(f"{repository}/manifests/{tag}", repository, headers=headers)
                digest = response.headers.get("Docker-Content-Digest") or (
                    "sha256:" + hashlib.sha256(response.content).hexdigest()
                )
        except requests.RequestException as e:
            raise FetchError(repository, tag, f"could not fetch tag ({self._describe(e)})", self._status(e))
        return TagDescriptor(digest=digest, media_type=response.headers.get("Content-Type"))

    def get_manifest(self, repository: str, digest: str) -> Dict[str, Any]:
        """Fetch and parse a manifest by digest.

        Raises:
            FetchError: If the manifest cannot be fetched or parsed
        """
        headers = {"Accept": ", ".join(MANIFEST_MEDIA_TYPES)}
        try:
            response = self._get(f"{repository}/manifests/{digest}", repository, headers=headers)
            return response.json()
        except requests.RequestException as e:
            raise FetchError(repository, digest, f"could not fetch manifest ({self._describe(e)})", self._status(e))
        except ValueError as e:
            raise FetchError(repository, digest, f"could not parse manifest detail: {e}")

    def get_config_blob(self, repository: str, config_digest: str) -> Dict[str, Any]:
        """Fetch and parse an image configuration blob.

        Raises:
            FetchError: If the blob cannot be fetched or parsed
        """
        try:
            response = self._get(f"{repository}/blobs/{config_digest}", repository)
            return response.json()
        except requests.RequestException as e:
            raise FetchError(repository, config_digest, f"could not fetch blob ({self._describe(e)})", self._status(e))
        except ValueError as e:
            raise FetchError(repository, config_digest, f"could not parse blob: {e}")

    def delete_manifest(self, repository: str, digest: str) -> None:
        """Delete a manifest by digest. Never retried: an unknown outcome is a failure.

        Raises:
            DeleteError: If the registry does not answer 200/202
        """
        try:
            response = self._request("DELETE", f"{repository}/manifests/{digest}", repository)
        except (requests.RequestException, ValueError) as e:
            raise DeleteError(repository, digest, f"delete outcome unknown ({e})")

        if response.status_code in (200, 202):
            return
        if response.status_code == 405:
            message = "deletion is disabled on the registry (REGISTRY_STORAGE_DELETE_ENABLED)"
        elif response.status_code == 404:
            message = "manifest unknown"
        else:
            message = f"HTTP {response.status_code} {response.reason or ''}".strip()
        raise DeleteError(repository, digest, message, response.status_code)

    @staticmethod
    def _status(error: Exception) -> Optional[int]:
        response = getattr(error, "response", None)
        return response.status_code if response is not None else None


def check_connectivity(client: RegistryClient) -> None:
    """Ping the registry, logging the outcome.

    Raises:
        ConnectivityError: If the registry cannot be reached
    """
    logger.debug("Trying to fetch auth challenges")
    try:
        client.ping()
    except ConnectivityError:
        logger.error(f"Could not reach registry at {client.registry_url}")
        raise
    logger.info(f"Connected to registry at {client.registry_url}")
