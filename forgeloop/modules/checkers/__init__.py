"""
Checker implementations
"""

from forgeloop.modules.checkers.command_checker import CommandChecker, parse_diagnostics

__all__ = ['CommandChecker', 'parse_diagnostics']
