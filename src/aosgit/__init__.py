"""aosgit - Deterministic Git histories from Apple open source tarballs.

aosgit turns the versioned tarball releases published on
opensource.apple.com into Git repositories whose objects are byte-identical
across machines and runs.
"""

__version__ = "0.1.0"
__author__ = "aosgit Contributors"

__all__ = ["__version__", "__author__"]
