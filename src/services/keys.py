"""Storage key construction.

Key Format:
    {namespace}:{identifier}[:{segment}]*

Example:
    "USERS:1:TAGS:ruby:ITEMS"
"""
from typing import Any

# Reserved between key components; removed from every component before joining
DELIMITER = ":"


def build_key(*components: Any) -> str:
    """
    Join key components with the delimiter.

    Args:
        components: Namespace, identifier and sub-scope segments

    Returns:
        Store key with the delimiter stripped from each component
    """
    return DELIMITER.join(str(c).replace(DELIMITER, "") for c in components)
