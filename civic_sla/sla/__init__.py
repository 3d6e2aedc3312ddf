"""
SLA Module
==========

Bounded context for civic issue service level agreements.

Responsibilities:
- Derive SLA deadlines from issue priority
- Track SLA progress and classify escalation levels
- Escalate issues through periodic sweeps with an audit history
- Recompute deadlines on priority change
- Report SLA statistics and overdue issues per department
"""

__version__ = "1.0.0"
