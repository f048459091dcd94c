"""Nodes package initialization"""

from .lock_node import LockNode

__all__ = ['LockNode']
