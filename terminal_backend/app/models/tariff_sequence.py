"""
Concurrency control rows for tariff lifecycle writes.

Both tables are bumped with a single UPDATE inside the writing transaction.
The row lock that UPDATE takes serializes competing writers until commit.
"""

from sqlalchemy import Column, Integer, String

from terminal_backend.app.db.session import Base


class TariffCodeSequence(Base):
    """
    Last issued tariff code number per `<prefix>-<year>` namespace.
    """
    __tablename__ = "tariff_code_sequences"

    namespace = Column(String(30), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<TariffCodeSequence(namespace='{self.namespace}', last_value={self.last_value})>"


class TariffScopeLock(Base):
    """
    One row per (tariff type, client scope).

    Any transaction that makes a tariff ACTIVE bumps its scope row before
    running the overlap check.
    """
    __tablename__ = "tariff_scope_locks"

    scope_key = Column(String(150), primary_key=True)
    version = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<TariffScopeLock(scope_key='{self.scope_key}', version={self.version})>"
