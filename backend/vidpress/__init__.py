"""vidpress - adaptive video delivery transcoding worker."""

__version__ = "0.1.0"
