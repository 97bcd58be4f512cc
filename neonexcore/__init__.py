"""Building blocks for service applications: logging, metrics and alerts, notifications, RBAC, settings, service discovery, circuit breaking and traffic management."""

__version__ = "0.1.0"