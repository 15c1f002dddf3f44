"""
Package feed resolution and caching.

Lists the versions of a package available from local or remote sources and
opens their manifests and archives, caching remote responses in memory and
in a disk cache shared between processes.
"""

__version__ = "0.1.0"
