"""
SLA Compliance Module
=====================

Bounded context for Service Level Agreement tracking.

Responsibilities:
- Manage SLA policies (one active policy per priority)
- Assign response and resolution deadlines to new tickets
- Persist breach flags through a periodic, idempotent sweep
- Report compliance rates, at-risk and breached tickets by caller scope
- Hot-reload SLA behaviour configuration via watchdog
"""
