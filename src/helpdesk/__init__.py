"""
Helpdesk SLA Compliance Engine
==============================

Attaches response and resolution obligations to support tickets by
priority, tracks breaches and reports compliance.
"""

__version__ = "1.0.0"
