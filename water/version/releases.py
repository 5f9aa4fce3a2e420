"""Release index lookups against the GitHub releases API."""

from dataclasses import dataclass
from enum import Enum
from functools import cmp_to_key
from typing import Any, Dict, List, Optional

import httpx

from ..errors import InvalidVersionFormat, NoStableVersions, NotYetReleased, ReleaseIndexUnavailable
from ..utils.logger import get_logger
from ..utils.retry import RetryPolicy
from .compare import compare, validate_version

logger = get_logger(__name__)


class ReleaseType(str, Enum):
    """Release family to look up."""

    TALOS = "talos"
    KUBERNETES = "kubernetes"


@dataclass(frozen=True)
class ReleaseConfig:
    """Where and how to fetch releases for one family."""

    repo_url: str
    max_versions: int
    user_agent: str


RELEASE_CONFIGS: Dict[ReleaseType, ReleaseConfig] = {
    ReleaseType.TALOS: ReleaseConfig(
        repo_url="https://api.github.com/repos/siderolabs/talos/releases",
        max_versions=5,
        user_agent="water-talos-version-checker/1.0",
    ),
    ReleaseType.KUBERNETES: ReleaseConfig(
        repo_url="https://api.github.com/repos/siderolabs/kubelet/releases",
        max_versions=5,
        user_agent="water-k8s-version-checker/1.0",
    ),
}


def get_release_config(release_type: ReleaseType) -> ReleaseConfig:
    try:
        return RELEASE_CONFIGS[ReleaseType(release_type)]
    except (KeyError, ValueError):
        raise ValueError(f"unsupported release type: {release_type}")


def _newest_first(a: str, b: str) -> int:
    # compare() returns NEWER (1) when a is ahead; negate for descending order
    return -compare(a, b).value


def filter_stable_versions(releases: List[Dict[str, Any]], max_versions: int) -> List[str]:
    """Keep published, well-formed, deduplicated tags, newest first."""
    versions: List[str] = []
    seen = set()

    for release in releases:
        tag = release.get("tag_name") or ""
        if release.get("prerelease") or release.get("draft") or not tag:
            continue
        if not tag.startswith("v"):
            continue
        try:
            validate_version(tag)
        except InvalidVersionFormat as e:
            logger.debug(f"Skipping invalid release tag {tag}: {e}")
            continue
        if tag not in seen:
            seen.add(tag)
            versions.append(tag)

    versions.sort(key=cmp_to_key(_newest_first))
    return versions[:max_versions]


class ReleaseIndex:
    """Lists currently available stable versions for a release family."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
    ):
        self._client = http_client
        self._owns_client = http_client is None
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3,
            delay=2.0,
            retry_on=(ReleaseIndexUnavailable, NoStableVersions),
        )
        self.timeout = timeout

    async def __aenter__(self) -> "ReleaseIndex":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_versions(self, release_type: ReleaseType) -> List[str]:
        """Single fetch without retries."""
        config = get_release_config(release_type)
        logger.debug(f"Fetching {release_type.value} releases from {config.repo_url}")

        try:
            response = await self._get_client().get(
                config.repo_url,
                headers={"User-Agent": config.user_agent, "Accept": "application/vnd.github+json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise ReleaseIndexUnavailable(f"failed to fetch {release_type.value} releases: {e}")

        if response.status_code != httpx.codes.OK:
            raise ReleaseIndexUnavailable(f"GitHub API returned status {response.status_code}")

        try:
            releases = response.json()
        except ValueError as e:
            raise ReleaseIndexUnavailable(f"failed to decode release list: {e}")
        if not isinstance(releases, list):
            raise ReleaseIndexUnavailable("unexpected release list payload")

        versions = filter_stable_versions(releases, config.max_versions)
        logger.debug(f"Filtered {len(releases)} {release_type.value} releases to {versions}")
        return versions

    async def _fetch_non_empty(self, release_type: ReleaseType) -> List[str]:
        versions = await self.fetch_versions(release_type)
        if not versions:
            raise NoStableVersions(f"no stable {release_type.value} versions found")
        return versions

    async def available_versions(self, release_type: ReleaseType) -> List[str]:
        """Stable versions, newest first, retried per the retry policy."""
        release_type = ReleaseType(release_type)
        versions = await self.retry_policy.call(
            f"Fetching {release_type.value} versions",
            lambda: self._fetch_non_empty(release_type),
        )
        logger.info(f"Available {release_type.value} versions: {', '.join(versions)}")
        return versions

    async def validate_target_available(self, release_type: ReleaseType, target_version: str) -> List[str]:
        """Raise NotYetReleased unless the target is a published stable version.

        Returns the available versions on success.
        """
        release_type = ReleaseType(release_type)
        validate_version(target_version)

        available = await self.available_versions(release_type)
        if target_version not in available:
            logger.info(
                f"Target {release_type.value} version {target_version} is not yet released "
                f"(available: {', '.join(available)})"
            )
            raise NotYetReleased(release_type.value, target_version, available)

        logger.debug(f"Target {release_type.value} version {target_version} is available")
        return available
