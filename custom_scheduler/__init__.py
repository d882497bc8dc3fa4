"""
Custom Scheduler

A capability-matched job scheduler for Buildkite: reserves jobs through the
Stacks API, indexes them by agent query rules in Redis and hands them to
polling workers that run the agent against a single job.
"""

__version__ = "1.0.0"
