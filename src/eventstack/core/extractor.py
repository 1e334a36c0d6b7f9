"""
Key path extraction for nested event documents.

Plucks every value stored under a key at any depth of a document,
across mapping fields and sequence elements.
"""

from typing import Any, List, Mapping, Optional


def pluck_all_values(obj: Any, target_key: Optional[str]) -> List[Any]:
    """
    Pluck the values of all occurrences of target_key in obj.
    
    Traversal is outer-to-inner, left-to-right. A value found under the
    key is not searched further, but its sibling fields are. A found
    sequence is spread into the result so the result is always flat.
    
    Args:
        obj: Document to search (mapping, sequence or scalar)
        target_key: Key to pluck all values for
        
    Returns:
        Flat list of found values; empty when obj or target_key is missing
    """
    if obj is None or not target_key:
        return []
    
    found: List[Any] = []
    
    if isinstance(obj, (list, tuple)):
        for item in obj:
            found.extend(pluck_all_values(item, target_key))
    
    elif isinstance(obj, Mapping):
        for key, value in obj.items():
            if key == target_key:
                if isinstance(value, (list, tuple)):
                    found.extend(value)
                else:
                    found.append(value)
            else:
                found.extend(pluck_all_values(value, target_key))
    
    return found
