from .timing import TimingMiddleware

__all__ = ["TimingMiddleware"]
