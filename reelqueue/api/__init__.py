from .app import create_app
from .dependencies import Services

__all__ = ["Services", "create_app"]
