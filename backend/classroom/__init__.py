"""Classroom Sessions: timed practice-test sessions with adaptive retests."""

__version__ = "0.1.0"
