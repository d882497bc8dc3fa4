"""
Monitor module.
Contains the reservation monitor that feeds the job index.
"""

from custom_scheduler.monitor.main import Monitor, run

__all__ = ["Monitor", "run"]
