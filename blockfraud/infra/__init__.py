from blockfraud.infra.repositories import (
    DisputeStore,
    RepositoryError,
    TransactionRepository,
)

__all__ = [
    "DisputeStore",
    "RepositoryError",
    "TransactionRepository",
]
