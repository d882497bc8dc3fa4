"""
Worker module.
Contains the poll loop and the agent runner.
"""

from custom_scheduler.worker.agent import AgentRunner, build_agent_args, merge_tags
from custom_scheduler.worker.main import Worker, run

__all__ = ["Worker", "AgentRunner", "build_agent_args", "merge_tags", "run"]
