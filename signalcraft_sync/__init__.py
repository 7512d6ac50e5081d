"""Keep SignalCraft resources converged with their declarative desired state."""

from signalcraft_sync.version import __version__

__all__ = ["__version__"]
