"""
Pytest configuration and shared fixtures for Warden tests.
"""

from collections.abc import Callable

import pytest

from warden.config.schema import PolicyRuleConfig
from warden.models import Constraints, Subject
from warden.policy.engine import PolicyEngine
from warden.policy.rules import rules_from_config


@pytest.fixture
def subject() -> Subject:
    """Default test subject."""
    return Subject(channel="queue", user_id="alice")


@pytest.fixture
def make_policy() -> Callable[..., PolicyEngine]:
    """
    Factory building a PolicyEngine from compact rule tuples.

    Each rule is ``(subject, action, effect)`` or
    ``(subject, action, effect, constraints)``.
    """

    def build(*rules: tuple) -> PolicyEngine:
        configs = []
        for index, rule in enumerate(rules):
            subject_pattern, action, effect = rule[:3]
            constraints: Constraints | None = rule[3] if len(rule) > 3 else None
            configs.append(
                PolicyRuleConfig(
                    id=f"r{index + 1}",
                    subject=subject_pattern,
                    effect=effect,
                    action=action,
                    constraints=constraints,
                )
            )
        return PolicyEngine(rules_from_config(configs))

    return build
