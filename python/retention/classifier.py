"""
Tag classifier.

Images are sorted by creation time and walked from newest to oldest. Every
matching image that is retained, by recency or because it has not expired
yet, consumes one slot of the ``latest`` window:

    latest=2, deadline=30 days ago

    tag    age   result
    c      40d   RETAINED_RECENCY      (slot 1)
    b      50d   RETAINED_RECENCY      (slot 2)
    a      60d   DELETION_CANDIDATE

    tag    age   result
    c       5d   RETAINED_RECENCY      (slot 1)
    b      10d   RETAINED_RECENCY      (slot 2)
    x      15d   RETAINED_NOT_EXPIRED  (slot 3)
    a      60d   DELETION_CANDIDATE
"""

from typing import List, Sequence

from retention.config_manager import RetentionPolicy
from retention.filters import tag_matches
from retention.logging_utils import get_logger, with_fields
from retention.models import Classification, Image, TagDecision

logger = get_logger(__name__)


def sort_images(images: Sequence[Image]) -> List[Image]:
    """Oldest first. The sort is stable, so equal timestamps keep fetch order."""
    return sorted(images, key=lambda image: image.created_at)


def is_expired(image: Image, policy: RetentionPolicy) -> bool:
    return image.created_at < policy.deadline


def classify_images(images: Sequence[Image], policy: RetentionPolicy) -> List[TagDecision]:
    """Classify every image of one repository.

    Returns:
        One TagDecision per image, oldest first
    """
    ordered = sort_images(images)
    decisions: List[TagDecision] = [None] * len(ordered)
    retained_count = 0

    for index in range(len(ordered) - 1, -1, -1):
        image = ordered[index]
        log = with_fields(logger, repo=image.repository, tag=image.tag)

        if not tag_matches(image.tag, policy.tag_pattern, policy.exclude_tag_pattern):
            log.info(f"Ignore non matching tag ({_pattern_text(policy)})")
            classification = Classification.IGNORED
        elif retained_count < policy.latest:
            log.info(f"Keeping one of the {policy.latest} latest matching tags (created {image.created_at.isoformat()})")
            classification = Classification.RETAINED_RECENCY
            retained_count += 1
        elif not is_expired(image, policy):
            log.info("Tag not outdated")
            classification = Classification.RETAINED_NOT_EXPIRED
            retained_count += 1
        else:
            log.info(f"Marking tag as outdated (created {image.created_at.isoformat()})")
            classification = Classification.DELETION_CANDIDATE

        decisions[index] = TagDecision(image=image, classification=classification)

    return decisions


def _pattern_text(policy: RetentionPolicy) -> str:
    parts = [f"tag={policy.tag_pattern.pattern}"]
    if policy.exclude_tag_pattern is not None:
        parts.append(f"ntag={policy.exclude_tag_pattern.pattern}")
    return ", ".join(parts)
