"""Bundle wrapper module.

This module handles:
- Rendering thin shell wrappers around a built artifact
- Placing each bundle list's wrapper in its own directory
- Inspecting existing wrappers
"""

from aon_builder.wrappers.script import read_wrapper, wrapper_argv
from aon_builder.wrappers.service import BundleWrapper, inspect_wrapper, wrap

__all__ = ["BundleWrapper", "inspect_wrapper", "read_wrapper", "wrap", "wrapper_argv"]
