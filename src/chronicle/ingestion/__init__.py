"""Ingestion pipeline for Chronicle.

Turns inbox messages, note files and calendar entries into tasks, calendar
events and narrative log entries attached to tracked projects.
"""
