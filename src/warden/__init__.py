"""
Warden - Policy-Gated Agent Runtime

This package provides:
- Capability registry for providers, channels, tools, memory and runtimes
- Resilient provider router with retry, fallback and circuit breaking
- Tool sandbox with parameter validation, policy checks and runtime limits
- Vector memory store behind a single backend interface
- Per-session orchestrator loop driven by inbound channel messages
"""

__version__ = "0.1.0"
__author__ = "Warden Engineering Team"
