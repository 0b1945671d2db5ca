"""Order payment and consistency engine for a multi-provider commerce platform."""

__version__ = "0.1.0"
