"""
Module: procurement_kernel.db.types
Responsibility: Annotated column declarations shared by every model.
    Centralizes precision and string widths so quantities, money, codes and
    hashes are declared identically across the schema.
Architecture position: Kernel > DB.  Imported by models/.  MUST NOT import
    from models/, services/ or domain/.

Invariants enforced:
    CRITICAL: No floats.  Quantities, rates and money are Numeric(38, 9)
    columns mapped to Decimal.
"""

from decimal import Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String
from sqlalchemy.orm import mapped_column

QUANTITY_DECIMAL_PLACES = 9

# Quantities, rates and money share one precision: 38 digits, 9 places
Quantity = Annotated[Decimal, mapped_column(Numeric(38, QUANTITY_DECIMAL_PLACES), nullable=False)]
Money = Annotated[Decimal, mapped_column(Numeric(38, QUANTITY_DECIMAL_PLACES), nullable=False)]

# Monotonic sequence number for ordering
Sequence = Annotated[int, mapped_column(BigInteger, nullable=False)]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, mapped_column(String(64), nullable=False)]

# Enum values stored as their string value
ShortCode = Annotated[str, mapped_column(String(50), nullable=False)]

# Names, units, titles
Label = Annotated[str, mapped_column(String(255), nullable=False)]
