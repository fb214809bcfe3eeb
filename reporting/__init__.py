"""Reporting - periodic PDF report scheduling and generation.

Schedules recurring report tasks, queues their generation, composes fetched
data into paginated PDF documents and hands the results to the mail queue.
"""

__version__ = "0.1.0"
