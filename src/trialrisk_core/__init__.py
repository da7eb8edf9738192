"""Trial risk task/notification consistency engine.

Imported clinical data records are checked against per-trial threshold
rules; breaches become tasks (at most one open task per record and metric)
and each task is fanned out as one notification per target user.
"""

__version__ = "1.0.0"
