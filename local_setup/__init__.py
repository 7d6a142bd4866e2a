"""Bootstrap a local platform-mesh cluster on kind or k3d."""

__version__ = "0.1.0"
