"""
Row validation and normalization for contact imports.

Each raw row is projected through the column mapping into a
``CandidateContact``. A candidate is either valid (ready for a batch) or
carries the ``RejectionReason`` that keeps it out of the database. Only the
client-number check is always on; the remaining checks are policy flags that
default to off.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Set

from contact_ingest.core.config import Settings, settings as default_settings
from contact_ingest.utils.phone import phone_lookup_key, validate_phone
from .mapping import ColumnMapping


EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


class RejectionReason(str, Enum):
    MISSING_CLIENT_NUMBER = "MISSING_CLIENT_NUMBER"
    MISSING_PHONE = "MISSING_PHONE"
    INVALID_PHONE = "INVALID_PHONE"
    INVALID_EMAIL = "INVALID_EMAIL"
    DUPLICATE_PHONE = "DUPLICATE_PHONE"
    DUPLICATE_CLIENT_NUMBER = "DUPLICATE_CLIENT_NUMBER"


@dataclass(frozen=True)
class ValidationPolicy:
    """Togglable row checks. Everything but the client number is off by default."""
    require_phone: bool = False
    check_duplicate_phone: bool = False
    check_duplicate_client_number: bool = False
    validate_email_format: bool = False
    validate_phone_format: bool = False

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ValidationPolicy":
        config = config or default_settings
        return cls(
            require_phone=config.import_require_phone_mapping,
            check_duplicate_phone=config.import_check_duplicate_phone,
            check_duplicate_client_number=config.import_check_duplicate_client_number,
            validate_email_format=config.import_validate_email_format,
            validate_phone_format=config.import_validate_phone_format,
        )


@dataclass(frozen=True)
class CandidateContact:
    """A normalized, not-yet-persisted contact built from one input row."""
    row_number: int
    client_number: str = ""
    last_name: str = ""
    first_name: str = ""
    company_name: str = ""
    role: str = ""
    email: str = ""
    phone: str = ""
    profile: str = ""
    status: str = ""
    rejection: Optional[RejectionReason] = None

    @property
    def is_valid(self) -> bool:
        return self.rejection is None

    def to_contact_row(self) -> dict:
        """Column values for the contacts table."""
        return {
            "num_client": self.client_number,
            "nom": self.last_name,
            "prenom": self.first_name,
            "raison_sociale": self.company_name or None,
            "fonction": self.role,
            "email": self.email,
            "num_tel": self.phone or None,
        }


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value.strip()))


@dataclass
class RowValidator:
    """
    Stateful validator for one import run.

    The duplicate checks remember the phones / client numbers of rows already
    accepted in this run, so a validator must not be shared between imports.
    Rows are expected in file order.
    """
    mapping: ColumnMapping
    policy: ValidationPolicy = field(default_factory=ValidationPolicy)
    default_profile: str = ""
    default_status: str = ""
    known_phone_numbers: Iterable[str] = ()
    _seen_phones: Set[str] = field(default_factory=set, init=False, repr=False)
    _seen_client_numbers: Set[str] = field(default_factory=set, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.policy.check_duplicate_phone:
            self._seen_phones.update(
                phone_lookup_key(phone) for phone in self.known_phone_numbers if phone
            )

    def validate(self, raw_row: Mapping[str, Any], row_number: int) -> CandidateContact:
        values = self.mapping.project(raw_row)
        values["profile"] = values["profile"] or self.default_profile
        values["status"] = values["status"] or self.default_status

        rejection = self._check(values)
        if rejection is None:
            self._remember(values)
        return CandidateContact(row_number=row_number, rejection=rejection, **values)

    def _check(self, values: Mapping[str, str]) -> Optional[RejectionReason]:
        policy = self.policy
        phone = values["phone"]

        if not values["client_number"]:
            return RejectionReason.MISSING_CLIENT_NUMBER
        if policy.require_phone and not phone:
            return RejectionReason.MISSING_PHONE
        if policy.validate_phone_format and phone and not validate_phone(phone):
            return RejectionReason.INVALID_PHONE
        if policy.validate_email_format and values["email"] and not is_valid_email(values["email"]):
            return RejectionReason.INVALID_EMAIL
        if policy.check_duplicate_phone and phone and phone_lookup_key(phone) in self._seen_phones:
            return RejectionReason.DUPLICATE_PHONE
        if policy.check_duplicate_client_number and values["client_number"] in self._seen_client_numbers:
            return RejectionReason.DUPLICATE_CLIENT_NUMBER
        return None

    def _remember(self, values: Mapping[str, str]) -> None:
        if self.policy.check_duplicate_phone and values["phone"]:
            self._seen_phones.add(phone_lookup_key(values["phone"]))
        if self.policy.check_duplicate_client_number:
            self._seen_client_numbers.add(values["client_number"])
