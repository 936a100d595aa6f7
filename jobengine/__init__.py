"""Durable background job scheduling, retry and cron dispatch engine."""

__version__ = "1.0.0"
