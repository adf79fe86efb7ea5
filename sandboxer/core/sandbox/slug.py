"""Per-owner unique slug generation."""

from __future__ import annotations

import hashlib
import re

from sandboxer.repos.sandbox import SandboxRepository

MAX_SLUG_LENGTH = 48

_INVALID_RUN = re.compile(r"[^a-z0-9]+")


def slugify(name: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    """Lowercase, collapse non-alphanumeric runs to single hyphens and bound the length.

    Never returns an empty string: names with nothing usable become
    ``sandbox-<token>`` where the token is derived from the name.
    """
    slug = _INVALID_RUN.sub("-", name.lower()).strip("-")
    slug = slug[:max_length].rstrip("-")
    if not slug:
        slug = f"sandbox-{hashlib.sha1(name.encode('utf-8')).hexdigest()[:8]}"
    return slug


async def generate_unique_slug(repo: SandboxRepository, user_id: str, name: str) -> str:
    """Return a slug for ``name`` that no other sandbox of ``user_id`` uses.

    Collisions get ``-2``, ``-3``, ... appended, trimming the base so the
    result stays within the length bound.
    """
    base = slugify(name)
    if await repo.is_slug_available(user_id, base):
        return base

    counter = 2
    while True:
        suffix = f"-{counter}"
        candidate = f"{base[: MAX_SLUG_LENGTH - len(suffix)].rstrip('-')}{suffix}"
        if await repo.is_slug_available(user_id, candidate):
            return candidate
        counter += 1
