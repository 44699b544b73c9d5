"""
Event Consolidation Pipeline

Collapses bursts of repeated user activity into bounded daily session records.
"""

__version__ = "1.0.0"
