"""
histdb Session - Command start/finish tracking.
"""

from histdb.session.machine import FinishResult, SessionStateMachine

__all__ = ["FinishResult", "SessionStateMachine"]
