"""
Tag Expressions

Inventory tags follow the form ``namespace:predicate=value``. Searches are
expressed with the same syntax, where the predicate and value are optional.
"""

import logging
from typing import NamedTuple, Optional

logger = logging.getLogger(__name__)


class TagExpression(NamedTuple):
    """A split ``namespace:predicate=value`` tag."""
    namespace: str
    predicate: Optional[str] = None
    value: Optional[str] = None

    @property
    def prefix(self) -> str:
        """The ``namespace:predicate`` search prefix (the ':' is always present)."""
        return f"{self.namespace}:{self.predicate or ''}"


def split_tag(tag: str) -> TagExpression:
    """
    Split a tag into its namespace, predicate and value.

    Only the first ':' and the first '=' are significant, so values may
    themselves contain '=':

        >>> split_tag("nd:auth=foo=bar")
        TagExpression(namespace='nd', predicate='auth', value='foo=bar')
    """
    namespace, sep, remainder = tag.partition(":")
    if not sep:
        expression = TagExpression(namespace)
    else:
        predicate, sep, value = remainder.partition("=")
        expression = TagExpression(namespace, predicate, value if sep else None)

    # Values can be preshared keys; only the search prefix is logged
    logger.debug(f"Split tag into prefix {expression.prefix!r}")
    return expression


def tag_value(tag: str) -> Optional[str]:
    """Return the value part of a full tag, or None if it has none."""
    return split_tag(tag).value
