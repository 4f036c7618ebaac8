"""
Versioned STIX Collection Store

An append-only store for STIX objects and their TAXII manifest: every
revision of an object is kept, indexed by version and by the time the
collection learned about it.
"""

__version__ = "1.0.0"
