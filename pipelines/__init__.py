"""
Data pipelines for the bus passenger trip service

This directory contains jobs that run on schedules:
- snapshot_schedules.py: Freeze each bus's live schedule into schedule history
"""
