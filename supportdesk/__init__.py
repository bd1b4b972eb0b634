"""Multi-channel customer support conversation engine."""

from .__version__ import __version__

__all__ = ["__version__"]
