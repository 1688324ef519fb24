"""Building blocks for patching container images: platforms, references, loaders and scans."""

__version__ = "0.1.0"