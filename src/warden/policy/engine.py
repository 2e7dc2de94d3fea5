"""
Security Policy Engine: ordered first-match rule evaluation.

Rules are evaluated most specific subject pattern first, declaration
order breaking ties. The first rule matching both subject and action
decides. No match means DENY (fail closed).

Reloads swap one immutable RuleSet reference, so an evaluation always
sees either the old or the new rule set, never a mix.
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any

from ..models import PolicyDecision, PolicyVerdict, Subject
from .rules import PolicyRule, RuleSet, rules_from_config
from .sources import RuleSource

logger = logging.getLogger(__name__)

REASON_RULE_MATCH = "rule_match"
REASON_NO_MATCH = "no_matching_rule"


class PolicyEngine:
    """
    Evaluates (subject, action) pairs against an ordered rule set.

    Decisions are cached per (subject, action, policy version); a reload
    bumps the version and drops the cache.

    Usage:
        engine = PolicyEngine()
        engine.reload_from(StaticRuleSource(config.policy.rules))
        decision = engine.evaluate(subject, "shell.exec")
    """

    def __init__(
        self,
        rules: list[PolicyRule] | None = None,
        cache_size: int = 1024,
    ) -> None:
        """
        Initialize the policy engine.

        Args:
            rules: Initial rules (empty = deny everything).
            cache_size: Maximum cached decisions (0 disables caching).
        """
        self._cache_size = cache_size
        self._cache: dict[tuple[str, str, int], PolicyDecision] = {}
        self._lock = threading.Lock()
        self._ruleset = RuleSet.build(list(rules or []), version=1)

        logger.info(
            f"🔒 PolicyEngine initialized with {len(self._ruleset.rules)} rules"
        )

    @property
    def version(self) -> int:
        """Current rule set version."""
        return self._ruleset.version

    @property
    def rules(self) -> tuple[PolicyRule, ...]:
        """Current rules in evaluation order."""
        return self._ruleset.rules

    def reload(self, rules: list[PolicyRule]) -> int:
        """
        Atomically replace the rule set.

        Args:
            rules: New rules in declaration order.

        Returns:
            The new policy version.
        """
        with self._lock:
            new_set = RuleSet.build(list(rules), version=self._ruleset.version + 1)
            self._ruleset = new_set
            self._cache = {}

        logger.info(
            f"🔒 Policy reloaded: version={new_set.version} rules={len(new_set.rules)}"
        )
        return new_set.version

    def reload_from(self, source: RuleSource) -> int:
        """
        Load rules from a rule source and swap them in.

        Args:
            source: Rule source capability.

        Returns:
            The new policy version.

        Raises:
            ConfigError: If the source yields malformed rules; the current
                rule set stays in place.
        """
        rules = rules_from_config(source.load())
        logger.info(f"🔒 Loading policy from source '{source.name}'")
        return self.reload(rules)

    def evaluate(
        self,
        subject: Subject | str,
        action: str,
        context: Mapping[str, Any] | None = None,
    ) -> PolicyDecision:
        """
        Decide whether ``subject`` may perform ``action``.

        Args:
            subject: Subject or its canonical key.
            action: Action identity (e.g. "shell.exec").
            context: Extra details for logging (tool name, invocation id).

        Returns:
            The policy decision.
        """
        subject_key = subject.key if isinstance(subject, Subject) else subject
        ruleset = self._ruleset
        cache_key = (subject_key, action, ruleset.version)

        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        rule = ruleset.first_match(subject_key, action)
        if rule is None:
            decision = PolicyDecision(
                verdict=PolicyVerdict.DENY,
                reason=REASON_NO_MATCH,
                rule_id=None,
                subject=subject_key,
                action=action,
                policy_version=ruleset.version,
            )
        else:
            decision = PolicyDecision(
                verdict=rule.effect,
                reason=REASON_RULE_MATCH,
                rule_id=rule.rule_id,
                subject=subject_key,
                action=action,
                policy_version=ruleset.version,
                constraints=(
                    rule.constraints
                    if rule.effect is PolicyVerdict.ALLOW_WITH_CONSTRAINTS
                    else None
                ),
            )

        if decision.verdict is PolicyVerdict.DENY:
            logger.info(
                f"🚫 Policy denied {action} for {subject_key} "
                f"(rule={decision.rule_id}, reason={decision.reason}, "
                f"context={dict(context or {})})"
            )
        else:
            logger.debug(
                f"🔓 Policy {decision.verdict.value} {action} for {subject_key} "
                f"(rule={decision.rule_id})"
            )

        self._store(cache_key, decision)
        return decision

    def allowed_actions(
        self, subject: Subject | str, actions: Iterable[str]
    ) -> set[str]:
        """
        Filter actions down to the ones not denied for the subject.

        Args:
            subject: Subject or its key.
            actions: Candidate actions.

        Returns:
            Set of permitted actions.
        """
        return {a for a in actions if self.evaluate(subject, a).allowed}

    def _store(self, key: tuple[str, str, int], decision: PolicyDecision) -> None:
        if self._cache_size <= 0:
            return
        with self._lock:
            if key[2] != self._ruleset.version:
                return
            if len(self._cache) >= self._cache_size:
                self._cache.pop(next(iter(self._cache)))
            self._cache[key] = decision

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "PolicyEngine":
        """
        Build an engine and load its rules from the configured source.

        Args:
            config: ``source`` (RuleSource instance) and optional ``cache_size``.

        Returns:
            Loaded engine.

        Raises:
            ValueError: If no rule source is supplied.
        """
        source = config.get("source")
        if not isinstance(source, RuleSource):
            raise ValueError("PolicyEngine requires a 'source' RuleSource")
        engine = cls(cache_size=int(config.get("cache_size", 1024)))
        engine.reload_from(source)
        return engine
