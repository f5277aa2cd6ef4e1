"""Starboard: GitHub repository leaderboard and issue-opportunity sync engine."""

__version__ = "1.0.0"
