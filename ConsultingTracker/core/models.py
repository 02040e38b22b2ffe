"""Record types shared by the entity store, the remote mapper and the merge engine.

Every record in the four collections carries a stable client-generated ``id`` and an
``updated_at`` ISO 8601 timestamp. The timestamp is the only input to conflict
resolution, so every field change must go through :func:`touch` (or otherwise bump
``updated_at``). The :class:`Profile` is a singleton and is never merged.
"""
import dataclasses
import datetime
import enum
import logging
import uuid
from typing import Any, Dict, List, Optional, Type

from dateutil import parser as date_parser

OLDEST = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


class Collection(enum.StrEnum):
    """Enum for the record collections kept in sync."""
    Clients = 'clients'
    Projects = 'projects'
    TimeEntries = 'time_entries'
    Invoices = 'invoices'


class InvoiceStatus(enum.StrEnum):
    """Enum for invoice lifecycle states."""
    Draft = 'draft'
    Sent = 'sent'
    Paid = 'paid'


class BillingType(enum.StrEnum):
    """Enum for how a client is billed."""
    Hourly = 'hourly'
    Monthly = 'monthly'


def now_str() -> str:
    """Return current UTC date and time as an ISO 8601 string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def new_id() -> str:
    """Return a fresh, globally unique record id."""
    return str(uuid.uuid4())


def parse_timestamp(value: Optional[str]) -> datetime.datetime:
    """Parse an ISO 8601 timestamp into an aware datetime.

    Naive values are taken as UTC. Blank or unparsable values sort before every real
    timestamp, so a record without a usable ``updated_at`` never wins a merge.

    Args:
        value: The timestamp string, e.g. ``2025-01-01T10:00:00.000Z``.

    Returns:
        datetime.datetime: A timezone-aware datetime.
    """
    if not value:
        return OLDEST
    try:
        dt = date_parser.isoparse(str(value).strip())
    except (ValueError, OverflowError):
        logging.warning(f'Could not parse timestamp "{value}"; treating it as the oldest time.')
        return OLDEST
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


class RecordMixin:
    """Dictionary conversion shared by all record dataclasses."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Build a record from a dict, ignoring keys this version does not know about."""
        names = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclasses.dataclass
class Client(RecordMixin):
    id: str
    name: str
    currency: str = 'USD'
    rate: float = 0.0
    billing_type: str = BillingType.Hourly.value
    invoice_required: bool = False
    payment_terms: Optional[str] = None
    payment_method: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True
    created_at: str = ''
    updated_at: str = ''


@dataclasses.dataclass
class Project(RecordMixin):
    id: str
    client_id: str
    name: str
    is_active: bool = True
    created_at: str = ''
    updated_at: str = ''


@dataclasses.dataclass
class TimeEntry(RecordMixin):
    """A unit of billable work.

    ``hours`` and ``fixed_amount`` are both informative: a fixed-amount entry may still
    record the hours spent.
    """
    id: str
    client_id: str
    date: str
    project_id: Optional[str] = None
    hours: float = 0.0
    fixed_amount: Optional[float] = None
    description: str = ''
    paid_date: Optional[str] = None
    created_at: str = ''
    updated_at: str = ''


@dataclasses.dataclass
class Invoice(RecordMixin):
    """An invoice with currency, rate and totals frozen at creation time.

    ``time_entry_ids`` is empty for flat monthly billing.
    """
    id: str
    client_id: str
    invoice_date: str
    invoice_number: Optional[str] = None
    time_entry_ids: List[str] = dataclasses.field(default_factory=list)
    total_hours: float = 0.0
    total_amount: float = 0.0
    currency: str = 'USD'
    rate_used: float = 0.0
    status: str = InvoiceStatus.Draft.value
    paid_date: Optional[str] = None
    notes: Optional[str] = None
    created_at: str = ''
    updated_at: str = ''


@dataclasses.dataclass
class Profile(RecordMixin):
    """The operator's own business identity."""
    name: str = ''
    address: str = ''
    email: str = ''
    phone: str = ''
    ein: str = ''


RECORD_TYPES: Dict[Collection, Type[RecordMixin]] = {
    Collection.Clients: Client,
    Collection.Projects: Project,
    Collection.TimeEntries: TimeEntry,
    Collection.Invoices: Invoice,
}


def collection_of(record: RecordMixin) -> Collection:
    """Return the collection a record belongs to.

    Raises:
        TypeError: If the record is not one of the collection record types.
    """
    for collection, record_type in RECORD_TYPES.items():
        if type(record) is record_type:
            return collection
    raise TypeError(f'{type(record).__name__} is not a collection record.')


def touch(record, **changes):
    """Return a copy of ``record`` with ``changes`` applied and ``updated_at`` bumped to now."""
    changes['updated_at'] = now_str()
    return dataclasses.replace(record, **changes)


@dataclasses.dataclass
class Snapshot:
    """The full set of records across all collections plus the profile, at one point in time."""
    clients: List[Client] = dataclasses.field(default_factory=list)
    projects: List[Project] = dataclasses.field(default_factory=list)
    time_entries: List[TimeEntry] = dataclasses.field(default_factory=list)
    invoices: List[Invoice] = dataclasses.field(default_factory=list)
    profile: Profile = dataclasses.field(default_factory=Profile)

    def get(self, collection: Collection) -> List[Any]:
        return getattr(self, collection.value)

    def is_empty(self) -> bool:
        """True when none of the collections hold a record. The profile does not count."""
        return not any(self.get(c) for c in Collection)

    def counts(self) -> Dict[str, int]:
        return {c.value: len(self.get(c)) for c in Collection}
