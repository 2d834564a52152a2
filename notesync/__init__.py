"""notesync - two-way incremental synchronization of notes between a client and a server."""

__version__ = "0.1.0"
