"""Helpers for training workloads."""


def is_retryable_exit_code(exit_code: int) -> bool:
    """Exit codes from signals (128 and above) are worth a retry."""
    return exit_code >= 128