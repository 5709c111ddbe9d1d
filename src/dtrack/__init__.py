"""Deadline tracker API: collaborative deadlines with scheduled notifications."""
