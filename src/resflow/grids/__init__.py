from .structured import CartesianGrid

__all__ = ["CartesianGrid"]
