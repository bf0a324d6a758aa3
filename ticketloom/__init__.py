"""ticketloom — concurrent, scope-checked ticket execution for coding agents."""

from ticketloom.identity import __codename__, __tagline__, __version__

__all__ = ["__codename__", "__tagline__", "__version__"]
