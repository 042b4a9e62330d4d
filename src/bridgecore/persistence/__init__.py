from bridgecore.persistence.interfaces import CompletedTransactionStore, SessionStore
from bridgecore.persistence.stores import SqliteCompletedTransactionStore, SqliteSessionStore
from bridgecore.persistence.uow import UnitOfWork, UnitOfWorkFactory

__all__ = [
    "CompletedTransactionStore",
    "SessionStore",
    "SqliteCompletedTransactionStore",
    "SqliteSessionStore",
    "UnitOfWork",
    "UnitOfWorkFactory",
]
