"""Timeline Export Service.

An HTTP service that renders an editor's timeline to a video file:
- Content-addressed upload of source media
- Bounded render concurrency with a FIFO waiting queue
- ffmpeg encodes with progress polling, cancel and download
- Automatic expiry of finished jobs

Usage:
    ./start_server.py  # From repo root
"""

from .server import app, create_app

__all__ = ['app', 'create_app']
