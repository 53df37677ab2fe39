"""aon-builder - build and bundle-wrap always-online node executables.

This package compiles the always-online node binary once per toolchain and
platform, then produces thin wrapper executables that bake in the bundle
identifiers each deployment should serve.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
