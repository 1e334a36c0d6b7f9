"""
Policy evaluation.

Admission answers "is this event interesting", exclusion answers "is it
forbidden regardless". Callers evaluate both separately so an event that
was already admitted can still be vetoed later on.
"""

from typing import Any

import structlog

from ..models.events import to_document
from ..models.policy import Policy
from .matcher import match_exclusions, match_kinds, match_tags

logger = structlog.get_logger(__name__)


class PolicyEvaluator:
    """
    Applies one immutable policy to events and composite records.
    
    Accepts pydantic models or plain mappings; both are matched in
    their document form.
    """
    
    def __init__(self, policy: Policy) -> None:
        self.policy = policy
        logger.info(
            "Policy evaluator initialized",
            allow_all=policy.allow_all,
            allowed_kinds=policy.allowed_kinds,
            allowed_tags=policy.allowed_tags,
            exclusion_kinds=sorted(policy.exclusions or {}),
        )
    
    def should_admit(self, event: Any) -> bool:
        """
        Decide whether the event is retained.
        
        A set ``allow_all`` answers on its own; otherwise the event is
        retained when it passes the kind OR the tag allow-list.
        """
        document = to_document(event)
        if document is None:
            return False
        if self.policy.allow_all is not None:
            return self.policy.allow_all
        
        kind_ok = self.policy.allowed_kinds is not None and match_kinds(
            self.policy.allowed_kinds, document
        )
        tags_ok = self.policy.allowed_tags is not None and match_tags(
            self.policy.allowed_tags, document
        )
        return kind_ok or tags_ok
    
    def should_exclude(self, event: Any) -> bool:
        """Decide whether the event (and its composite) is vetoed."""
        document = to_document(event)
        if document is None or self.policy.exclusions is None:
            return False
        return match_exclusions(self.policy.exclusions, document)
