"""Workstream: cross-source work-tracking sync, correlation, and reporting."""
