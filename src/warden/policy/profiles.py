"""
Profile Presets for Tool Policy.

Named presets that define standard action bundles. A policy rule that
names a profile expands into one rule per action pattern.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ProfileDef:
    """
    Definition of an action access profile.

    Attributes:
        allow: Action patterns granted by the profile.
        deny: Action patterns always denied by the profile (checked first).
    """

    allow: tuple[str, ...]
    deny: tuple[str, ...] = ()


PROFILES: dict[str, ProfileDef] = {
    "minimal": ProfileDef(
        allow=("fs.read", "fs.search", "git.read", "memory.read"),
    ),
    "coding": ProfileDef(
        allow=("fs.*", "shell.exec", "git.*", "memory.*"),
    ),
    "messaging": ProfileDef(
        allow=("memory.*",),
        deny=("shell.*", "fs.write", "git.write", "plugin.*"),
    ),
    "full": ProfileDef(
        allow=("*",),
    ),
}
