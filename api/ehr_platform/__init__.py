"""EHR platform core: resource versioning, document patching and search."""

__version__ = "1.0.0"
