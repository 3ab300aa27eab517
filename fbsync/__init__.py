"""
fbsync - reconcile free/busy timelines with calendar appointments.
"""

__version__ = "0.1.0"
