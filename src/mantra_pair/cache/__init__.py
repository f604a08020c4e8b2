from .window import WindowCounter

__all__ = ["WindowCounter"]
