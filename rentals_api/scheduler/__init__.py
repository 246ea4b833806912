"""
Scheduling of the background sync jobs.
"""

from rentals_api.scheduler.periodic_job import JobState, PeriodicJob

__all__ = ["JobState", "PeriodicJob"]
