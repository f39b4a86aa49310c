"""
Accountability Engine - Source Package

The core of a personal accountability coach: challenges tracked day by day,
check-ins, streaks, self-imposed punishments and a conflict-aware schedule,
all persisted as human-readable text files.

DESIGN PRINCIPLES:
1. Plain-text records are the source of truth
2. Completed work can never be un-completed
3. Hand-edited files degrade gracefully, they never crash the engine
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Accountability Engine Team"
