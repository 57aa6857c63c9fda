"""
Orchestration facade and its event log.
"""

from dapp_orchestrator.facade.event_log import EventLog, LogEntry, LogStatus
from dapp_orchestrator.facade.orchestrator import WalletOrchestrator

__all__ = ["EventLog", "LogEntry", "LogStatus", "WalletOrchestrator"]
