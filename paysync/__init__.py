"""Milestone payment sync service."""
