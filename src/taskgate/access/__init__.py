"""Role x relationship access control."""

from taskgate.access.policy import POLICY, Action, Relation, permits
from taskgate.access.resolver import AccessScopeResolver

__all__ = ["POLICY", "AccessScopeResolver", "Action", "Relation", "permits"]
