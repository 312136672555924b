"""Autonomous multi-stage web research: plan, search, read, condense, report."""

__version__ = "0.1.0"
