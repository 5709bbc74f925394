"""Slug generation for heading anchors"""

import re


# Unicode letters and digits are kept; underscores count as separators.
_SEPARATOR_RE = re.compile(r'[\W_]+')


def slugify(text: str) -> str:
    """Lowercase text and collapse every run of non-alphanumerics into one hyphen.

    Hyphens left at either end are trimmed, so '!leading?' gives 'leading'.
    """
    return _SEPARATOR_RE.sub('-', text.lower()).strip('-')


def unique_slug(text: str, seen: set[str]) -> str:
    """Return slugify(text), suffixed -2, -3, ... until it is not in seen.

    The returned slug is added to seen. Text without any alphanumerics falls
    back to 'section'.
    """
    base = slugify(text) or "section"
    candidate, n = base, 2
    while candidate in seen:
        candidate = f"{base}-{n}"
        n += 1
    seen.add(candidate)
    return candidate
