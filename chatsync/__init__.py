"""chatsync: client-side conversation sync over a polled REST backend."""
from .engine import ChatEngine
from .api_interface import APIInterface, RealAPI
from .config import Settings

__all__ = ["ChatEngine", "APIInterface", "RealAPI", "Settings"]
__version__ = "0.1.0"
