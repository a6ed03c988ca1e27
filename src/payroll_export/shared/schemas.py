"""Per-organization table schemas.

One schema per record kind, resolved once at import. Column labels are the
store's column names; ``attribute`` is the name the pipeline reads them by.
Rows are allow-listed against these schemas on every read and write.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

PRIMARY_KEY = "id"
PUSHED_COLUMN = "added_to_fortnox"


@dataclass(frozen=True)
class FieldSpec:
    column: str
    attribute: Optional[str] = None
    type: str = "TEXT"
    required: bool = False
    default: Any = None
    unique: bool = False


@dataclass(frozen=True)
class RecordSchema:
    kind: str
    fields: Tuple[FieldSpec, ...]

    @property
    def columns(self) -> List[str]:
        return [f.column for f in self.fields]

    @property
    def column_types(self) -> List[str]:
        return [f.type for f in self.fields]

    def column_for(self, attribute: str) -> str:
        for spec in self.fields:
            if spec.attribute == attribute:
                return spec.column
        raise KeyError(f"{self.kind} has no attribute {attribute!r}")

    def normalize(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Project a stored row onto the schema, filling defaults for absent columns."""
        out: Dict[str, Any] = {PRIMARY_KEY: row.get(PRIMARY_KEY)}
        for spec in self.fields:
            out[spec.column] = row[spec.column] if spec.column in row else spec.default
        return out

    def to_attributes(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        normalized = self.normalize(row)
        values = {PRIMARY_KEY: normalized[PRIMARY_KEY]}
        for spec in self.fields:
            if spec.attribute:
                values[spec.attribute] = normalized[spec.column]
        return values

    def writable(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        """Reject any column that is not part of the schema."""
        unknown = [k for k in values if k not in self.columns]
        if unknown:
            raise KeyError(f"Unknown {self.kind} columns: {', '.join(unknown)}")
        return dict(values)


COMPENSATIONS = RecordSchema(
    kind="compensations",
    fields=(
        FieldSpec("Upplagd av", "created_by"),
        FieldSpec("Avser Mån/år", "period"),
        FieldSpec("Ledare", "leader_name"),
        FieldSpec("employee_id", "employee_id", required=True),
        FieldSpec("Kostnadsställe", "cost_center"),
        FieldSpec("Aktivitetstyp", "activity_code", required=True),
        FieldSpec("Antal", "quantity"),
        FieldSpec("Ersättning", "amount"),
        FieldSpec("Eventuell kommentar", "comment"),
        FieldSpec("Datum utbet", "payout_date"),
        FieldSpec(PUSHED_COLUMN, "pushed", type="BOOLEAN", default=False),
    ),
)

MONTHLY_RETAINER = RecordSchema(
    kind="monthly_retainer",
    fields=tuple(
        FieldSpec(name)
        for name in (
            "Ledare", "KS", "Jan", "Feb", "Mar", "Apr", "Maj", "Jun", "Jul",
            "Aug", "Sep", "Okt", "Nov", "Dec", "Summa", "Semers", "TOTALT",
            "Soc avg", "TOT KLUBB",
        )
    ),
)

PERSONNEL = RecordSchema(
    kind="personnel",
    fields=(
        FieldSpec("Upplagd av", "created_by"),
        FieldSpec("Personnummer", "tax_id"),
        FieldSpec("Förnamn", "first_name", required=True),
        FieldSpec("Efternamn", "last_name", required=True),
        FieldSpec("Clearingnr", "clearing_code"),
        FieldSpec("Bankkonto", "bank_account"),
        FieldSpec("Adress", "address"),
        FieldSpec("Postnr", "post_code"),
        FieldSpec("Postort", "city"),
        FieldSpec("E-post", "email", required=True, unique=True),
        FieldSpec("Kostnadsställe", "cost_center"),
        FieldSpec("Befattning", "position"),
        FieldSpec("Ändringsdag", "employment_date"),
        FieldSpec("Månad", "monthly_rate"),
        FieldSpec("Timme", "hourly_rate"),
        FieldSpec("Heldag", "daily_rate"),
        FieldSpec("Annan", "other_rate"),
        FieldSpec("Kommentar", "comment"),
        FieldSpec(PUSHED_COLUMN, "pushed", type="BOOLEAN", default=False),
        FieldSpec("fortnox_id", "fortnox_id"),
        FieldSpec("fortnox_employee_id", "external_employee_id"),
        FieldSpec("Aktiv", "active", type="BOOLEAN", default=True),
        FieldSpec("Skattesats", "tax_rate", type="NUMERIC", default=0),
        FieldSpec("Sociala Avgifter", "social_fee_eligible", type="BOOLEAN", default=False),
    ),
)

SCHEMAS: Dict[str, RecordSchema] = {
    s.kind: s for s in (COMPENSATIONS, MONTHLY_RETAINER, PERSONNEL)
}

# Argument order of the create_org_tables procedure.
PROVISIONING_ORDER = ("compensations", "monthly_retainer", "personnel")


def get_schema(kind: str) -> RecordSchema:
    if kind not in SCHEMAS:
        raise KeyError(f"Unknown table type: {kind}")
    return SCHEMAS[kind]


def _default_literal(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def provisioning_params(organization: str, kinds: Iterable[str] = PROVISIONING_ORDER) -> Dict[str, Any]:
    """Build named arguments for the ``create_org_tables`` procedure."""
    params: Dict[str, Any] = {"org_name": organization}
    for kind in kinds:
        schema = get_schema(kind)
        params[f"{kind}_cols"] = schema.columns
        params[f"{kind}_types"] = schema.column_types
        params[f"{kind}_defaults"] = [_default_literal(f.default) for f in schema.fields]
    return params
