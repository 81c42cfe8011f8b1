"""UserForge: user management REST API core (auth, storage, querying)."""

__version__ = "1.0.0"
