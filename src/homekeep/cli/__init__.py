"""homekeep CLI.

Inspect and drive the offline write queue from a terminal.

Usage:
    hk status                         Connectivity and queue summary
    hk pending                        List queued operations
    hk perform Task create -d '{...}' Issue a mutation
    hk sync                           Drain the queue now
    hk failed                         List rejected operations
"""

from homekeep.cli.main import app, main

__all__ = ["app", "main"]
