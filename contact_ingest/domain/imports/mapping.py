"""
Column mapping resolution for contact imports.

The caller maps each recognised contact field (``num_client``, ``numTel``...)
to a column of the uploaded file. The mapping may arrive as a JSON string
(multipart form field) or as an already-decoded object.
"""
import json
import logging
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from contact_ingest.core.errors import MissingMappingError

logger = logging.getLogger(__name__)

# Wire names of the recognised target fields, in form order.
TARGET_FIELDS = (
    "num_client",
    "nom",
    "prenom",
    "raisonSociale",
    "fonction",
    "email",
    "numTel",
    "profile",
    "status",
)


class ColumnMapping(BaseModel):
    """Maps contact fields to source column names. Unknown keys are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    client_number: Optional[str] = Field(None, alias="num_client")
    last_name: Optional[str] = Field(None, alias="nom")
    first_name: Optional[str] = Field(None, alias="prenom")
    company_name: Optional[str] = Field(None, alias="raisonSociale")
    role: Optional[str] = Field(None, alias="fonction")
    email: Optional[str] = None
    phone: Optional[str] = Field(None, alias="numTel")
    profile: Optional[str] = None
    status: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def normalize_source_column(cls, value: Any) -> Optional[str]:
        """Blank column names count as unmapped."""
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def mapped_columns(self) -> Dict[str, str]:
        """Return ``{field_name: source_column}`` for every mapped field."""
        return {
            name: column
            for name, column in self.model_dump(by_alias=False).items()
            if column
        }

    def project(self, raw_row: Mapping[str, Any]) -> Dict[str, str]:
        """
        Copy mapped cells out of a raw row, trimmed.

        Fields whose column is unmapped or absent from the row come back as
        empty strings.
        """
        projected = {name: "" for name in type(self).model_fields}
        for name, column in self.mapped_columns().items():
            value = raw_row.get(column)
            if value is not None:
                projected[name] = str(value).strip()
        return projected


def _decode_mapping(raw: Union[str, bytes, Mapping[str, Any]]) -> Mapping[str, Any]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MissingMappingError(f"Invalid JSON in column mapping: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise MissingMappingError("Column mapping must be an object of field -> column")
    return raw


def resolve_column_mapping(
    raw: Union[None, str, bytes, Mapping[str, Any], ColumnMapping],
    *,
    require_phone: bool = False,
) -> ColumnMapping:
    """
    Parse and validate a column mapping before any row is read.

    Args:
        raw: JSON text, a mapping object, or an existing ColumnMapping
        require_phone: Strict mode, ``numTel`` must be mapped as well

    Raises:
        MissingMappingError: if the mapping is absent, unparseable, or a
            mandatory field has no source column
    """
    if raw is None or (isinstance(raw, (str, bytes)) and not raw.strip()):
        raise MissingMappingError("Column mapping is required")

    if isinstance(raw, ColumnMapping):
        mapping = raw
    else:
        decoded = _decode_mapping(raw)
        unknown = sorted(set(decoded) - set(TARGET_FIELDS) - set(ColumnMapping.model_fields))
        if unknown:
            logger.warning("Ignoring unknown column mapping fields: %s", unknown)
        try:
            mapping = ColumnMapping.model_validate(decoded)
        except ValidationError as exc:
            raise MissingMappingError(f"Invalid column mapping: {exc}") from exc

    if not mapping.client_number:
        raise MissingMappingError("Missing mapping for required field: num_client")
    if require_phone and not mapping.phone:
        raise MissingMappingError("Missing mapping for required field: numTel")

    logger.info("Column mapping accepted: %s", mapping.model_dump(by_alias=True, exclude_none=True))
    return mapping
