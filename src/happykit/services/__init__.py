"""Background services: registration, concurrent initialization, named loaders."""

from happykit.services.base import Service
from happykit.services.loader import BackgroundLoader
from happykit.services.manager import ServiceManager

__all__ = ["BackgroundLoader", "Service", "ServiceManager"]
