"""
LendingDesk: borrow, return and overdue-fine lifecycle for a multi-branch library.

Exports key modules for convenient imports.
"""

import logging

from .domain import (
    Currency,
    FineReason,
    FineStatus,
    PaymentMethod,
    RatingSummary,
    Book,
    User,
    BorrowRecord,
    Fine,
)

from .errors import (
    ErrorKind,
    LendingError,
    NotFoundError,
    IneligibleError,
    LimitExceededError,
    AlreadyBorrowedError,
    ValidationError,
    InternalError,
    Outcome,
)

from .config import FinePolicy, LoanPolicy

from .repositories import (
    UserRepo,
    BookRepo,
    LoanRepo,
    FineRepo,
)

from .services import (
    CatalogService,
    MembershipService,
    FineService,
    CirculationService,
    FineInfo,
    ReturnReceipt,
    SweepDetail,
    SweepReport,
    FineSummary,
)

from .api import LibrarySystem
from .seed import seed_demo_data

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logging.getLogger(__name__).addHandler(logging.NullHandler())


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Attach a single stream handler to the ``lendingdesk`` logger."""
    logger = logging.getLogger(__name__)
    logger.setLevel(level)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger


__all__ = [
    # domain
    "Currency",
    "FineReason",
    "FineStatus",
    "PaymentMethod",
    "RatingSummary",
    "Book",
    "User",
    "BorrowRecord",
    "Fine",
    # errors
    "ErrorKind",
    "LendingError",
    "NotFoundError",
    "IneligibleError",
    "LimitExceededError",
    "AlreadyBorrowedError",
    "ValidationError",
    "InternalError",
    "Outcome",
    # config
    "FinePolicy",
    "LoanPolicy",
    "configure_logging",
    # repos
    "UserRepo",
    "BookRepo",
    "LoanRepo",
    "FineRepo",
    # services
    "CatalogService",
    "MembershipService",
    "FineService",
    "CirculationService",
    "FineInfo",
    "ReturnReceipt",
    "SweepDetail",
    "SweepReport",
    "FineSummary",
    # api
    "LibrarySystem",
    # seed
    "seed_demo_data",
]
