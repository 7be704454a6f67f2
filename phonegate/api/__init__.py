from .auth import router

__all__ = ["router"]
