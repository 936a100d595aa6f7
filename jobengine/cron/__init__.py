"""Persistent cron schedules bridged onto the job queue."""
