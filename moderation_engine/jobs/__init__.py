"""
Background Jobs for the Moderation Engine.

This module contains scheduled jobs:
- maintenance: Restriction expiry and case archival
"""

from .maintenance import run_maintenance_job

__all__ = ["run_maintenance_job"]
