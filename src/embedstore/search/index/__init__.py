"""Vector index backends."""

from embedstore.search.index.local import LocalVectorIndex

__all__ = ["LocalVectorIndex"]

try:
    from embedstore.search.index.pgvector import PgVectorIndex

    __all__.append("PgVectorIndex")
except ImportError:  # pragma: no cover
    pass
