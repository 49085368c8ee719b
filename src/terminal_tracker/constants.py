"""Enumerations and field limits shared across the terminal tracker.

Centralises domain constants so that the persistence gateway, the business
logic layer, the import mapper, and the CLI rely on a single source of truth
for device models, branch names, and field bounds.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

NAME_MAX_LENGTH = 25
TERMINAL_ID_MAX_LENGTH = 8
SERIAL_NUMBER_MIN_LENGTH = 5
SERIAL_NUMBER_MAX_LENGTH = 11
LINE_SERIAL_MIN_LENGTH = 16
LINE_SERIAL_MAX_LENGTH = 18
RETURN_REASON_MIN_LENGTH = 3
RETURN_REASON_MAX_LENGTH = 255


class TerminalType(str, Enum):
    """Enumerate the supported POS device models."""

    IPOS = "iPOS"
    AISINO_A75 = "Aisino A75"
    VERIFONE_X990 = "Verifone X990"
    PAX_S20 = "PAX S20"

    @classmethod
    def parse(cls, label: object) -> "TerminalType":
        """Resolve a label (or known misspelling) into a member.

        Raises:
            ValueError: If ``label`` does not name a supported model.
        """

        if isinstance(label, cls):
            return label
        text = str(label).strip()
        text = TERMINAL_TYPE_ALIASES.get(text, text)
        return cls(text)


# Source spreadsheets frequently spell the Aisino model as "Aisini".
TERMINAL_TYPE_ALIASES = {
    "Aisini A75": TerminalType.AISINO_A75.value,
}


class Branch(str, Enum):
    """Enumerate the branches and business units that can hold a terminal."""

    MASVINGO = "Masvingo Branch"
    MUTARE = "Mutare Branch"
    CHIREDZI = "Chiredzi Branch"
    GWERU = "Gweru Branch"
    CHINHOYI = "Chinhoyi Branch"
    PRIVATE_BANKING = "Private Banking"
    BINDURA = "Bindura Branch"
    SAMORA = "Samora Branch"
    JMN_BULAWAYO = "JMN Bulawayo"
    SSC = "SSC Branch"
    BUSINESS_BANKING = "Business Banking"
    DIGITAL_SERVICES = "Digital Services"
    CIB = "CIB"

    @classmethod
    def parse(cls, label: object) -> "Branch":
        """Resolve a branch label into a member.

        Raises:
            ValueError: If ``label`` does not name a known branch.
        """

        if isinstance(label, cls):
            return label
        return cls(str(label).strip())


class ReportType(str, Enum):
    """Enumerate the spreadsheet reports that can be exported."""

    TOTAL = "total"
    ACTIVE = "active"
    RETURNED = "returned"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the gateway."""

    TERMINALS = "Terminals"


# Column order of the Terminals sheet; the gateway relies on these headers.
TERMINAL_COLUMNS = (
    "ID",
    "Name",
    "TerminalID",
    "SerialNumber",
    "LineSerialNumber",
    "Type",
    "Branch",
    "DispatchDate",
    "FedexTrackingNumber",
    "IsReturned",
    "ReturnDate",
    "ReturnReason",
)


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "NAME_MAX_LENGTH",
    "TERMINAL_ID_MAX_LENGTH",
    "SERIAL_NUMBER_MIN_LENGTH",
    "SERIAL_NUMBER_MAX_LENGTH",
    "LINE_SERIAL_MIN_LENGTH",
    "LINE_SERIAL_MAX_LENGTH",
    "RETURN_REASON_MIN_LENGTH",
    "RETURN_REASON_MAX_LENGTH",
    "TerminalType",
    "TERMINAL_TYPE_ALIASES",
    "Branch",
    "ReportType",
    "SheetName",
    "TERMINAL_COLUMNS",
]
