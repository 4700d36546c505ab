"""
FastAPI application for the trial balance classifier.

This package contains the REST API and WebSocket server for uploading
trial balances, reformatting them and tracking classification jobs.
"""

__version__ = "1.0.0"
