"""
Policy rules and rule sets.

A rule pairs a subject pattern with an action pattern (fnmatch wildcards)
and yields a verdict. A RuleSet is an immutable, pre-sorted snapshot:
most specific subject pattern first, declaration order breaking ties.
"""

import fnmatch
from dataclasses import dataclass

from ..config.schema import PolicyRuleConfig
from ..exceptions import ConfigError
from ..models import Constraints, PolicyVerdict
from .profiles import PROFILES

WILDCARD_CHARS = frozenset("*?[")


def pattern_specificity(pattern: str) -> tuple[int, int]:
    """
    Rank how specific a subject pattern is.

    A literal pattern outranks any wildcard pattern; otherwise patterns
    with more literal characters rank higher.

    Args:
        pattern: fnmatch-style pattern.

    Returns:
        Sort key where larger means more specific.
    """
    literal = sum(1 for ch in pattern if ch not in WILDCARD_CHARS)
    is_literal = not any(ch in WILDCARD_CHARS for ch in pattern)
    return (1 if is_literal else 0, literal)


@dataclass(frozen=True)
class PolicyRule:
    """
    One evaluated policy rule.

    Attributes:
        rule_id: Identifier recorded in decisions.
        subject: Subject pattern matched against "<channel>:<user>".
        action: Action pattern matched against the tool's action identity.
        effect: Verdict produced on match.
        constraints: Constraints for ALLOW_WITH_CONSTRAINTS.
        order: Declaration index, used as tie-breaker.
    """

    rule_id: str
    subject: str
    action: str
    effect: PolicyVerdict
    constraints: Constraints | None = None
    order: int = 0

    def matches(self, subject_key: str, action: str) -> bool:
        return fnmatch.fnmatchcase(subject_key, self.subject) and fnmatch.fnmatchcase(
            action, self.action
        )

    @property
    def sort_key(self) -> tuple[int, int, int]:
        level, literal = pattern_specificity(self.subject)
        return (-level, -literal, self.order)


@dataclass(frozen=True)
class RuleSet:
    """Immutable, ordered snapshot of rules with its version."""

    version: int
    rules: tuple[PolicyRule, ...]

    @classmethod
    def build(cls, rules: list[PolicyRule], version: int) -> "RuleSet":
        return cls(version=version, rules=tuple(sorted(rules, key=lambda r: r.sort_key)))

    def first_match(self, subject_key: str, action: str) -> PolicyRule | None:
        for rule in self.rules:
            if rule.matches(subject_key, action):
                return rule
        return None


def rules_from_config(configs: list[PolicyRuleConfig]) -> list[PolicyRule]:
    """
    Convert configured rules into PolicyRules, expanding profiles.

    A profile rule expands into the profile's deny patterns (as deny
    rules) followed by its allow patterns (with the rule's effect), all
    sharing the declaration slot of the original rule.

    Args:
        configs: Rules in declaration order.

    Returns:
        Flat list of PolicyRules with increasing ``order``.

    Raises:
        ConfigError: If a rule names an unknown profile.
    """
    rules: list[PolicyRule] = []
    order = 0
    for cfg in configs:
        effect = PolicyVerdict(cfg.effect)
        if cfg.profile:
            profile = PROFILES.get(cfg.profile)
            if profile is None:
                raise ConfigError(
                    f"Rule '{cfg.id}': unknown profile '{cfg.profile}'. "
                    f"Valid: {sorted(PROFILES)}"
                )
            for pattern in profile.deny:
                rules.append(
                    PolicyRule(
                        rule_id=f"{cfg.id}:deny:{pattern}",
                        subject=cfg.subject,
                        action=pattern,
                        effect=PolicyVerdict.DENY,
                        order=order,
                    )
                )
                order += 1
            for pattern in profile.allow:
                rules.append(
                    PolicyRule(
                        rule_id=f"{cfg.id}:{pattern}",
                        subject=cfg.subject,
                        action=pattern,
                        effect=effect,
                        constraints=cfg.constraints,
                        order=order,
                    )
                )
                order += 1
        else:
            rules.append(
                PolicyRule(
                    rule_id=cfg.id,
                    subject=cfg.subject,
                    action=cfg.action or "",
                    effect=effect,
                    constraints=cfg.constraints,
                    order=order,
                )
            )
            order += 1
    return rules
