"""
Policy rule sources.

A rule source supplies the ordered rule list the engine evaluates.
Sources are registry capabilities so rules can come from inline
configuration or from a separately managed YAML file.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from ..config.parser import expand_env_vars, parse_rules
from ..config.schema import PolicyRuleConfig
from ..exceptions import ConfigError

logger = logging.getLogger(__name__)


class RuleSource(ABC):
    """Base class for policy rule sources."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name for logging."""

    @abstractmethod
    def load(self) -> list[PolicyRuleConfig]:
        """
        Load rules in declaration order.

        Raises:
            ConfigError: If the rules are malformed.
        """


class StaticRuleSource(RuleSource):
    """Rules declared inline in the runtime configuration."""

    def __init__(self, rules: list[PolicyRuleConfig]) -> None:
        self._rules = list(rules)

    @property
    def name(self) -> str:
        return "static"

    def load(self) -> list[PolicyRuleConfig]:
        return list(self._rules)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "StaticRuleSource":
        return cls(rules=list(config.get("rules", [])))


class FileRuleSource(RuleSource):
    """
    Rules loaded from a YAML document with a top-level ``rules`` list.

    The file is read on every ``load`` so a reload picks up edits.
    """

    def __init__(self, path: str) -> None:
        """
        Initialize file source.

        Args:
            path: Path to the YAML rules file.

        Raises:
            ConfigError: If path is empty.
        """
        if not path:
            raise ConfigError("File rule source requires 'path'")
        self._path = Path(path).expanduser()

    @property
    def name(self) -> str:
        return f"file:{self._path}"

    def load(self) -> list[PolicyRuleConfig]:
        """
        Read and parse the rules file.

        Returns:
            Parsed rules.

        Raises:
            ConfigError: If the file is missing or malformed.
        """
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read policy file {self._path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in policy file {self._path}: {e}") from e

        if not isinstance(raw, dict) or not isinstance(raw.get("rules"), list):
            raise ConfigError(f"Policy file {self._path} must contain a 'rules' list")

        rules = parse_rules(expand_env_vars(raw["rules"]))
        logger.info(f"📄 Loaded {len(rules)} policy rules from {self._path}")
        return rules

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "FileRuleSource":
        return cls(path=config.get("path", ""))
