"""kbsync - website knowledge synchronization and conflict resolution."""

__version__ = "0.1.0"
