"""
histdb UI - Console output.
"""

from histdb.ui.display import DisplayColumns, HistoryUI

__all__ = ["DisplayColumns", "HistoryUI"]
