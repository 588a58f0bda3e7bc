"""
Retention pruning for Docker registries.

Decides which tagged images in a registry may be deleted under an age and
name-pattern retention policy, and deletes them by digest while keeping any
content still referenced by a retained tag.
"""

__version__ = "0.6.0"
