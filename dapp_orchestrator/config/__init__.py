"""
Configuration management for dapp_orchestrator.

Loads settings from environment variables and an optional .env file.
"""

from dapp_orchestrator.config.settings import OrchestratorConfig, get_settings  # noqa: F401

__all__ = ["OrchestratorConfig", "get_settings"]
