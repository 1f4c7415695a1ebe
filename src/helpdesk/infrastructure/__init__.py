"""
Infrastructure
==============

Application-wide technical infrastructure (database engine and sessions).
"""
