"""Live state synchronization for shared task lists."""

__version__ = "0.1.0"
