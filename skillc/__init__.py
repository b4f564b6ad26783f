"""skillc: compile interface specs and instructions into agent skill artifacts."""

__version__ = "0.1.0"
