from storage.relational import predicates

from storage.relational.predicates import (StoragePredicateError,
                                           accessible_by, compile_clause,
                                           rules_to_query,)

__all__ = ['StoragePredicateError', 'accessible_by', 'compile_clause',
           'predicates', 'rules_to_query']
