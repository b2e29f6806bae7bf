from storage import relational

__all__ = ['relational']
