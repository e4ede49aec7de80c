from .timeout_sweeper import TimeoutSweeper

__all__ = ["TimeoutSweeper"]
