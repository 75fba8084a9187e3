"""
.. include:: ../README.md
"""

__all__ = [
    "config",
    "values",
    "yaml_path",
    "template",
    "chart",
    "helm",
    "package",
    "writer",
    "exceptions",
]
