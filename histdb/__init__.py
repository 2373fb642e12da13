"""
histdb - shell command history daemon.

Records every command run across shell sessions and hosts into
per-host append-only logs and answers queries against them.
"""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("histdb")
except PackageNotFoundError:
    # Package not installed, fallback to pyproject.toml
    __version__ = "0.1.0"

__author__ = "histdb Contributors"
