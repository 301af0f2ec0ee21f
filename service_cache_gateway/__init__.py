"""Offline Cache Gateway service."""
