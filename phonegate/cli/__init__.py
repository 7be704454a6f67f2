"""
Command line interface for phonegate.

This module provides the ``phonegate`` entry point. Every command is
registered in the commands package.
"""
from .commands import app

__all__ = ['app']
