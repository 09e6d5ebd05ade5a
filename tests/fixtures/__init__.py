"""
Test fixtures for deterministic testing.

This module provides:
- builders: Block / rule / envelope constructors from naive local ISO strings
- NOW: the fixed clock every planner fixture uses
"""

from .builders import NOW, envelope, make_block, make_rule, write_inbox

__all__ = ["NOW", "envelope", "make_block", "make_rule", "write_inbox"]
