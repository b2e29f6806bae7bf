from security import policy

__all__ = ['policy']
