"""
Policy matching predicates.

Three independent checks of one event document against the policy:
- kind allow-list
- tag allow-list
- exclusions (per-kind field values, matched at any depth)

The "all" wildcard short-circuits a check to true before the
"__neverlog__" sentinel is looked at.
"""

from typing import Any, Mapping, Optional, Sequence

from ..models.events import safe_dumps
from ..models.policy import NEVER_LOG, WILDCARD
from .extractor import pluck_all_values


def match_kinds(
    allowed_kinds: Optional[Sequence[str]],
    event: Optional[Mapping[str, Any]],
) -> bool:
    """
    Check the event's kind against the kind allow-list.
    
    Args:
        allowed_kinds: Kinds to allow, may contain the "all" wildcard
        event: Event document
        
    Returns:
        True if the wildcard is present or the kind is listed
    """
    if allowed_kinds is None or event is None:
        return False
    if WILDCARD in allowed_kinds:
        return True
    
    kind = event.get("kind")
    if not kind or kind == NEVER_LOG:
        return False
    return kind in allowed_kinds


def match_tags(
    allowed_tags: Optional[Sequence[str]],
    event: Optional[Mapping[str, Any]],
) -> bool:
    """
    Check the event's tags against the tag allow-list.
    
    Args:
        allowed_tags: Tags to allow, may contain the "all" wildcard
        event: Event document
        
    Returns:
        True if the wildcard is present or at least one event tag is listed
    """
    if allowed_tags is None or event is None:
        return False
    if WILDCARD in allowed_tags:
        return True
    
    tags = event.get("tags")
    if not isinstance(tags, (list, tuple)) or not tags or NEVER_LOG in tags:
        return False
    return any(tag in tags for tag in allowed_tags)


def match_exclusions(
    exclusions: Optional[Mapping[str, Any]],
    event: Optional[Mapping[str, Any]],
) -> bool:
    """
    Check whether any exclusion rule vetoes the event.
    
    Each field key of the event kind's rules is plucked from the event at
    any depth; a present value that is listed, or whose JSON form occurs
    inside the JSON form of the listed values, is a hit.
    
    Args:
        exclusions: Per-kind exclusion rules
        event: Event document
        
    Returns:
        True if the event must not be written
    """
    if exclusions is None or event is None:
        return False
    if exclusions.get(WILDCARD):
        return True
    
    kind = event.get("kind")
    if not kind or not exclusions.get(kind):
        return False
    
    kind_exclusions = exclusions[kind]
    if kind_exclusions.get(WILDCARD):
        return True
    
    for field_key, banned_values in kind_exclusions.items():
        if field_key == WILDCARD:
            continue
        if WILDCARD in banned_values:
            return True
        
        # Loose fallback: substring of the serialized list also counts
        serialized_banned = safe_dumps(banned_values)
        for value in pluck_all_values(event, field_key):
            if not _is_present(value):
                continue
            if value in banned_values or safe_dumps(value) in serialized_banned:
                return True
    
    return False


def _is_present(value: Any) -> bool:
    """None, False, zero and "" never match; containers do, even when empty."""
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value != ""
    if isinstance(value, (int, float)) and value == 0:
        return False
    return True
