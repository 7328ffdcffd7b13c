"""Webshot - background web page capture pipeline.

Captures rendered pages as images through a durable job queue: single
captures, timed frame sequences, auto-scrolling sequences and crawls.
"""

__version__ = "1.0.0"
