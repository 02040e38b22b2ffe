"""Conversion between records and the row/column shape of the remote spreadsheet.

Every collection is written as one worksheet: a header row followed by one row of plain
text cells per record. Writing always emits the full current column set. Reading
locates columns by header name, never by position, so worksheets written by an older
version (fewer columns, legacy header names, different column order) still load. Absent
fields fall back to neutral values:

- text: ``''``
- optional text and optional numbers: ``None``
- numbers: ``0.0``
- flags: the field's default (``Active`` is ``Yes``, ``Invoice Required`` is ``No``)
- id lists: ``[]``
- invoice status: ``draft``

The profile is stored in a two-column ``Field | Value`` worksheet, and the sync
metadata in a two-column ``Key | Value`` worksheet.
"""
import dataclasses
import enum
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .models import Collection, InvoiceStatus, Profile, RECORD_TYPES, Snapshot

Table = List[List[str]]

ID_LIST_SEPARATOR = ';'
TRUE_VALUES = ('yes', 'true', 'y', '1')
FALSE_VALUES = ('no', 'false', 'n', '0')

PROFILE_TABLE = 'Profile'
META_TABLE = 'Meta'
META_LAST_MODIFIED = 'lastModified'


class Kind(enum.StrEnum):
    """Enum for how a field is written to and read from a text cell."""
    Text = 'text'
    OptionalText = 'optional_text'
    Float = 'float'
    OptionalFloat = 'optional_float'
    Bool = 'bool'
    IdList = 'id_list'
    Status = 'status'


@dataclasses.dataclass(frozen=True)
class Column:
    header: str
    field: str
    kind: Kind = Kind.Text
    aliases: Tuple[str, ...] = ()
    default: Any = None


COLUMNS: Dict[Collection, List[Column]] = {
    Collection.Clients: [
        Column('ID', 'id'),
        Column('Name', 'name'),
        Column('Currency', 'currency'),
        Column('Billing Type', 'billing_type', default='hourly'),
        Column('Rate', 'rate', Kind.Float, aliases=('Hourly Rate',)),
        Column('Invoice Required', 'invoice_required', Kind.Bool, default=False),
        Column('Payment Terms', 'payment_terms', Kind.OptionalText),
        Column('Payment Method', 'payment_method', Kind.OptionalText),
        Column('Contact Name', 'contact_name', Kind.OptionalText),
        Column('Contact Email', 'contact_email', Kind.OptionalText),
        Column('Notes', 'notes', Kind.OptionalText),
        Column('Active', 'is_active', Kind.Bool, default=True),
        Column('Created', 'created_at'),
        Column('Updated', 'updated_at'),
    ],
    Collection.Projects: [
        Column('ID', 'id'),
        Column('Client ID', 'client_id', aliases=('Company ID',)),
        Column('Name', 'name'),
        Column('Active', 'is_active', Kind.Bool, default=True),
        Column('Created', 'created_at'),
        Column('Updated', 'updated_at'),
    ],
    Collection.TimeEntries: [
        Column('ID', 'id'),
        Column('Client ID', 'client_id', aliases=('Company ID',)),
        Column('Project ID', 'project_id', Kind.OptionalText),
        Column('Date', 'date'),
        Column('Hours', 'hours', Kind.Float),
        Column('Fixed Amount', 'fixed_amount', Kind.OptionalFloat),
        Column('Description', 'description'),
        Column('Paid Date', 'paid_date', Kind.OptionalText),
        Column('Created', 'created_at'),
        Column('Updated', 'updated_at'),
    ],
    Collection.Invoices: [
        Column('ID', 'id'),
        Column('Client ID', 'client_id', aliases=('Company ID',)),
        Column('Invoice #', 'invoice_number', Kind.OptionalText),
        Column('Date', 'invoice_date'),
        Column('Time Entry IDs', 'time_entry_ids', Kind.IdList),
        Column('Total Hours', 'total_hours', Kind.Float),
        Column('Total Amount', 'total_amount', Kind.Float),
        Column('Currency', 'currency'),
        Column('Rate Used', 'rate_used', Kind.Float),
        Column('Status', 'status', Kind.Status),
        Column('Paid Date', 'paid_date', Kind.OptionalText),
        Column('Notes', 'notes', Kind.OptionalText),
        Column('Created', 'created_at'),
        Column('Updated', 'updated_at'),
    ],
}

TABLE_NAMES: Dict[Collection, str] = {
    Collection.Clients: 'Clients',
    Collection.Projects: 'Projects',
    Collection.TimeEntries: 'TimeEntries',
    Collection.Invoices: 'Invoices',
}

# Worksheet names used by older documents, read when the current name is absent
TABLE_ALIASES: Dict[str, Tuple[str, ...]] = {
    'Clients': ('Companies',),
}

PROFILE_FIELDS: List[Tuple[str, str]] = [
    ('Name', 'name'),
    ('Address', 'address'),
    ('Email', 'email'),
    ('Phone', 'phone'),
    ('EIN', 'ein'),
]

ENTITY_TABLES: List[str] = [TABLE_NAMES[c] for c in Collection] + [PROFILE_TABLE]
ALL_TABLES: List[str] = ENTITY_TABLES + [META_TABLE]


def read_table_names() -> List[str]:
    """Return every worksheet name a pull should ask for, legacy names included."""
    names = list(ENTITY_TABLES)
    for name in ENTITY_TABLES:
        names.extend(TABLE_ALIASES.get(name, ()))
    return names


def _to_cell(column: Column, value: Any) -> str:
    if column.kind == Kind.Bool:
        return 'Yes' if value else 'No'
    if column.kind == Kind.IdList:
        return ID_LIST_SEPARATOR.join(str(v) for v in (value or []))
    if value is None:
        return ''
    if column.kind in (Kind.Float, Kind.OptionalFloat):
        return str(float(value))
    return str(value)


def _from_cell(column: Column, raw: str) -> Any:
    # Text cells keep their whitespace; every other kind is parsed from the stripped cell
    if column.kind == Kind.Text:
        return raw if raw or column.default is None else column.default
    if column.kind == Kind.OptionalText:
        return raw or None

    text = raw.strip()
    if column.kind in (Kind.Float, Kind.OptionalFloat):
        if not text:
            return None if column.kind == Kind.OptionalFloat else 0.0
        try:
            return float(text.replace(',', ''))
        except ValueError:
            logging.debug(f'Failed to parse "{text}" as a number for column "{column.header}". Storing 0.0.')
            return None if column.kind == Kind.OptionalFloat else 0.0
    if column.kind == Kind.Bool:
        lowered = text.lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        return column.default
    if column.kind == Kind.IdList:
        return [part.strip() for part in text.split(ID_LIST_SEPARATOR) if part.strip()]
    if column.kind == Kind.Status:
        if text.lower() in {s.value for s in InvoiceStatus}:
            return text.lower()
        if text:
            logging.warning(f'Unknown invoice status "{text}". Storing "{InvoiceStatus.Draft.value}".')
        return InvoiceStatus.Draft.value

    raise ValueError(f'Unknown column kind "{column.kind}"')


def _to_frame(table: Sequence[Sequence[Any]], columns: List[Column]) -> pd.DataFrame:
    """Build a frame holding exactly the current columns of a collection.

    Short rows are padded, surplus cells dropped, duplicate headers keep their first
    occurrence, legacy headers are renamed, and missing columns are added empty.
    """
    headers = [c.header for c in columns]
    if not table:
        return pd.DataFrame(columns=headers, dtype=object)

    remote_header = [str(h).strip() for h in table[0]]
    width = len(remote_header)
    body = [
        [('' if cell is None else str(cell)) for cell in list(row)[:width]] + [''] * (width - len(row))
        for row in table[1:]
    ]
    df = pd.DataFrame(body, columns=remote_header, dtype=object)
    df = df.loc[:, ~df.columns.duplicated()]

    renames: Dict[str, str] = {}
    for column in columns:
        if column.header in df.columns:
            continue
        alias = next((a for a in column.aliases if a in df.columns), None)
        if alias:
            renames[alias] = column.header
    if renames:
        logging.debug(f'Reading legacy headers as current ones: {renames}')
        df = df.rename(columns=renames)

    missing = [h for h in headers if h not in df.columns]
    if missing:
        logging.debug(f'Remote table lacks columns [{", ".join(missing)}]; using neutral defaults.')

    return df.reindex(columns=headers, fill_value='')


def to_rows(collection: Collection, records: Sequence[Any]) -> Table:
    """Convert records of one collection to a header row plus data rows.

    Args:
        collection: The collection the records belong to.
        records: The records to convert.

    Returns:
        list[list[str]]: The full table, header first.
    """
    columns = COLUMNS[collection]
    rows: Table = [[c.header for c in columns]]
    for record in records:
        rows.append([_to_cell(c, getattr(record, c.field)) for c in columns])
    return rows


def from_rows(collection: Collection, table: Sequence[Sequence[Any]]) -> List[Any]:
    """Convert a remote table back to records of one collection.

    Rows with a blank id are skipped.

    Args:
        collection: The collection to read.
        table: The remote table, header row first. May be empty.

    Returns:
        list: The parsed records in table order.
    """
    columns = COLUMNS[collection]
    record_type = RECORD_TYPES[collection]
    df = _to_frame(table, columns)

    records = []
    for row in df.to_dict('records'):
        if not str(row['ID']).strip():
            logging.debug(f'Skipping a {collection.value} row without an id.')
            continue
        values = {c.field: _from_cell(c, str(row[c.header])) for c in columns}
        records.append(record_type(**values))
    return records


def profile_to_rows(profile: Profile) -> Table:
    rows: Table = [['Field', 'Value']]
    for label, field in PROFILE_FIELDS:
        rows.append([label, getattr(profile, field) or ''])
    return rows


def profile_from_rows(table: Sequence[Sequence[Any]]) -> Profile:
    """Read the profile table; unknown labels are ignored and missing ones read as ``''``."""
    values = {}
    for row in list(table)[1:]:
        if not row:
            continue
        label = str(row[0]).strip()
        values[label] = str(row[1]) if len(row) > 1 and row[1] is not None else ''
    return Profile(**{field: values.get(label, '') for label, field in PROFILE_FIELDS})


def meta_to_rows(last_modified: str) -> Table:
    return [['Key', 'Value'], [META_LAST_MODIFIED, last_modified]]


def meta_from_rows(table: Sequence[Sequence[Any]]) -> Optional[str]:
    """Return the ``lastModified`` value of a metadata table, or None when absent."""
    for row in list(table)[1:]:
        if len(row) > 1 and str(row[0]).strip() == META_LAST_MODIFIED:
            value = str(row[1]).strip()
            return value or None
    return None


def snapshot_to_tables(snapshot: Snapshot) -> Dict[str, Table]:
    """Convert a snapshot to one table per entity worksheet, profile included."""
    tables = {TABLE_NAMES[c]: to_rows(c, snapshot.get(c)) for c in Collection}
    tables[PROFILE_TABLE] = profile_to_rows(snapshot.profile)
    return tables


def tables_to_snapshot(tables: Dict[str, Table]) -> Snapshot:
    """Convert the tables read from the remote document to a snapshot.

    Worksheets missing from ``tables`` read as empty collections. A legacy worksheet name
    is only used when the current name is absent.
    """
    snapshot = Snapshot()
    for collection in Collection:
        name = TABLE_NAMES[collection]
        table = tables.get(name)
        if not table:
            alias = next((a for a in TABLE_ALIASES.get(name, ()) if tables.get(a)), None)
            if alias:
                logging.info(f'Reading {collection.value} from legacy worksheet "{alias}".')
                table = tables[alias]
        setattr(snapshot, collection.value, from_rows(collection, table or []))
    snapshot.profile = profile_from_rows(tables.get(PROFILE_TABLE) or [])
    return snapshot
