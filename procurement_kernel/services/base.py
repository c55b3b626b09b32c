"""
BaseService: shared constructor for the kernel's infrastructure services.

Responsibility:
    Holds the SQLAlchemy ``Session`` a service writes through.  Kernel
    infrastructure services (SequenceService, AuditLog) only ever
    ``flush()``; the operation services that call them own commit and
    rollback.

Architecture position:
    Kernel > Services.  Extended by AuditLog.  The operation services
    (request lifecycle, purchase order assembler, delivery reconciler)
    are transaction owners and do not extend it.

Failure modes:
    - A subclass that commits on its own would split a state change from
      its audit entry.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from procurement_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for flush-only kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read models; those live in ``selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
