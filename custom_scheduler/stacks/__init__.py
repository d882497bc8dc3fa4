"""
Stacks API module.
Contains the client for the upstream scheduling authority.
"""

from custom_scheduler.stacks.client import StacksClient, register_stack

__all__ = ["StacksClient", "register_stack"]
