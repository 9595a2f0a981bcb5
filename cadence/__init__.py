"""
Cadence: spaced-repetition practice core for self-paced courses.

Subpackages:
- cadence.delivery: persistence, SM-2 scheduling, streaks, backups and the CLI
- cadence.study: queue building, session runners, pomodoro timer, concept strength
"""

__version__ = "0.1.0"
