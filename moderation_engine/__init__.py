"""Moderation case workflow engine.

Reports, staff applications and restriction requests move through a claim
and review lifecycle; restrictions are materialized from templates.
"""

__version__ = "1.0.0"
