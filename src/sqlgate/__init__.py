"""SQL gateway with allowlisting, row-level security, caching and REST access."""

__version__ = "0.1.0"
