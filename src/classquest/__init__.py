"""Progression and reward propagation engine for classroom gamification."""

__version__ = "0.1.0"
