"""
Operations package - CLI support layer.

Centralizes error mapping and output formatting while keeping CLI commands
thin and testable.
"""
from .mappers import EXIT_CODES, exit_code_for, run_and_exit

__all__ = ["EXIT_CODES", "exit_code_for", "run_and_exit"]
