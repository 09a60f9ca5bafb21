"""Session and API pagination layer for a Cloud Foundry explorer."""

__version__ = "0.1.0"
