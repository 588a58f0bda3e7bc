"""
Image catalog builder.

Resolves every tag of a repository to an Image (digest plus creation time
from the config blob). The catalog is all-or-nothing: one unresolvable tag
discards the whole repository, because the missing image could be the one
whose digest protects content from deletion.
"""

from datetime import timezone
from typing import Any, Dict, List, Optional, Sequence

from dateutil import parser as date_parser

from retention.error_utils import FetchError
from retention.logging_utils import get_logger, with_fields
from retention.models import Image

logger = get_logger(__name__)


def _config_digest(client, repository: str, tag: str, manifest: Dict[str, Any]) -> str:
    """Find the config blob digest of a manifest.

    Image indexes carry no config of their own; the first platform manifest
    stands in for the creation time while the index digest stays the one
    that gets deleted.
    """
    config = manifest.get("config") or {}
    if config.get("digest"):
        return config["digest"]

    children = manifest.get("manifests") or []
    if children and children[0].get("digest"):
        child = client.get_manifest(repository, children[0]["digest"])
        child_config = child.get("config") or {}
        if child_config.get("digest"):
            return child_config["digest"]

    raise FetchError(repository, tag, "manifest has no config blob (unsupported manifest schema)")


def parse_created(repository: str, tag: str, blob: Dict[str, Any]):
    """Parse the ``created`` timestamp of a config blob as an aware datetime."""
    created = blob.get("created")
    if not created:
        raise FetchError(repository, tag, "config blob has no creation time")
    try:
        created_at = date_parser.isoparse(created)
    except (ValueError, OverflowError) as e:
        raise FetchError(repository, tag, f"invalid creation time {created!r}: {e}")
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at


def fetch_image(client, repository: str, tag: str) -> Image:
    """Resolve one tag to an Image.

    Raises:
        FetchError: If the descriptor, manifest or config blob cannot be resolved
    """
    log = with_fields(logger, repo=repository, tag=tag)

    log.debug("Fetching tag...")
    descriptor = client.get_tag_descriptor(repository, tag)

    log.debug("Fetching manifest...")
    manifest = client.get_manifest(repository, descriptor.digest)
    config_digest = _config_digest(client, repository, tag, manifest)

    log.debug("Fetching blob")
    blob = client.get_config_blob(repository, config_digest)

    return Image(
        repository=repository,
        tag=tag,
        digest=descriptor.digest,
        created_at=parse_created(repository, tag, blob),
        config_digest=config_digest,
    )


def build_catalog(client, repository: str, tags: Optional[Sequence[str]] = None) -> List[Image]:
    """Build the Image list of one repository, in registry tag order.

    Args:
        client: Registry client exposing list_tags/get_tag_descriptor/get_manifest/get_config_blob
        repository: Repository name
        tags: Tag names, if already listed (fetched from the registry otherwise)

    Raises:
        FetchError: For the first tag that cannot be resolved; no partial list is returned
    """
    if tags is None:
        tags = client.list_tags(repository)

    images = []
    for tag in tags:
        try:
            images.append(fetch_image(client, repository, tag))
        except FetchError as e:
            with_fields(logger, repo=repository, tag=tag).error(f"Could not resolve tag: {e}")
            raise
    return images
