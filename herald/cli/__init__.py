"""
CLI module for Herald - contains command-line interface components.
"""

from herald.cli.app import cli

__all__ = ["cli"]
