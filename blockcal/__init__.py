"""
blockcal - a local time-block calendar engine.

Recurring series materialization, conflict policies for interactive
placement, and an append-only command inbox for external agents.
"""

__version__ = "0.4.0"
