"""
Reaper module.
Contains the periodic maintenance loop for the queue table.
"""

from dbqueue.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
