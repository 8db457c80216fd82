"""Signed, retried webhook delivery for job lifecycle events."""
