from .memo_loader import MemoLoader

__all__ = [
    "MemoLoader",
]
