"""
Structured logging for dapp_orchestrator.

JSON logs with timestamp, event_type and keyword fields.
Use get_logger() in every module.
"""

from dapp_orchestrator.dapp_logging.logger import get_logger

__all__ = ["get_logger"]
