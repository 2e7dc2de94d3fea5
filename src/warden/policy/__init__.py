"""
Policy Engine for action authorization.

Ordered subject/action rules with first-match semantics:
    1. Rules sorted by subject specificity (literal before wildcard,
       then more literal characters first)
    2. Declaration order breaks ties
    3. No matching rule denies (fail closed)

Profiles (minimal/coding/messaging/full) expand into action bundles.
"""

from .engine import PolicyEngine
from .profiles import PROFILES, ProfileDef
from .rules import PolicyRule, RuleSet, pattern_specificity, rules_from_config
from .sources import FileRuleSource, RuleSource, StaticRuleSource

__all__ = [
    "FileRuleSource",
    "PROFILES",
    "PolicyEngine",
    "PolicyRule",
    "ProfileDef",
    "RuleSet",
    "RuleSource",
    "StaticRuleSource",
    "pattern_specificity",
    "rules_from_config",
]
