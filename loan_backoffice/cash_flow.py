"""
Cash Flow Ledger Module

Record of money moving in and out of the back office. Operators create,
edit and delete manual income/expense entries; loan disbursements and
repayments are posted by the system and can never be edited or deleted
through the manual entry points.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import logging

from .money import Money, Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditAction
from .exceptions import ValidationError, NotFoundError, ForbiddenError


logger = logging.getLogger(__name__)


class CashFlowType(Enum):
    """Kinds of cash flow entries"""
    INCOME = "income"
    EXPENSE = "expense"
    LOAN_DISBURSEMENT = "loan_disbursement"
    LOAN_REPAYMENT = "loan_repayment"

    @property
    def is_system(self) -> bool:
        """System-generated entries are immutable"""
        return self in (CashFlowType.LOAN_DISBURSEMENT, CashFlowType.LOAN_REPAYMENT)

    @property
    def is_inflow(self) -> bool:
        """Counts toward income in summaries"""
        return self in (CashFlowType.INCOME, CashFlowType.LOAN_REPAYMENT)


MANUAL_TYPES = (CashFlowType.INCOME, CashFlowType.EXPENSE)
EDITABLE_FIELDS = ("type", "amount", "description", "date")


@dataclass
class CashFlowEntry(StorageRecord):
    """One monetary event"""
    entry_type: CashFlowType
    amount: Money
    description: str
    entry_date: date
    related_id: Optional[int] = None

    @property
    def is_system(self) -> bool:
        return self.entry_type.is_system


@dataclass(frozen=True)
class CashFlowTotals:
    """Income and expense totals over a set of entries"""
    total_income: Money
    total_expense: Money

    @property
    def net(self) -> Money:
        return self.total_income - self.total_expense


def parse_date(value: Union[date, str, None], field_name: str) -> date:
    """Accept a date or an ISO date string"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field_name}", [f"{field_name} must be an ISO date (YYYY-MM-DD)"])


def parse_amount(value: Any, field_name: str = "amount") -> Decimal:
    """Accept a positive Decimal-compatible value"""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {field_name}", [f"{field_name} must be a number"])
    if not amount.is_finite() or amount <= Decimal('0'):
        raise ValidationError(f"Invalid {field_name}", [f"{field_name} must be greater than zero"])
    return amount


def parse_money(value: Any, currency: Currency, field_name: str = "amount") -> Money:
    """Positive amount rounded to the currency's minor unit; rounding to zero is rejected"""
    money = Money(parse_amount(value, field_name), currency)
    if not money.is_positive():
        raise ValidationError(
            f"Invalid {field_name}",
            [f"{field_name} must be at least {currency.quantum} {currency.code}"]
        )
    return money


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class CashFlowLedger:
    """
    Manages cash flow entries
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 currency: Currency = Currency.TZS):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency = currency
        self.table_name = "cash_flow"

    # Manual entries

    def append(
        self,
        entry_type: Union[CashFlowType, str, None],
        amount: Any,
        description: Optional[str],
        entry_date: Union[date, str, None],
        actor_id: Optional[Any] = None
    ) -> CashFlowEntry:
        """
        Record a manual income or expense entry

        Raises:
            ValidationError: a field is missing, the type is not income/expense,
                or the amount is not positive
        """
        missing = [name for name, value in (
            ("type", entry_type), ("amount", amount),
            ("description", description), ("date", entry_date)
        ) if _is_blank(value)]
        if missing:
            raise ValidationError("All fields are required", [f"missing field: {name}" for name in missing])

        kind = self._parse_manual_type(entry_type)
        entry = self._create_entry(
            kind,
            parse_money(amount, self.currency),
            str(description).strip(),
            parse_date(entry_date, "date")
        )

        self.audit_trail.record(actor_id, AuditAction.CREATE_TRANSACTION,
                                f"Created {kind.value} transaction of {entry.amount.amount}")
        return entry

    def update(self, entry_id: int, changes: Dict[str, Any], actor_id: Optional[Any] = None) -> CashFlowEntry:
        """
        Edit a manual entry

        Raises:
            NotFoundError: unknown entry
            ForbiddenError: the entry was generated by the system
            ValidationError: nothing to change, or an invalid value
        """
        with self.storage.atomic():
            entry = self._load_for_mutation(entry_id, "modified")

            unknown = [key for key in changes if key not in EDITABLE_FIELDS]
            if unknown:
                raise ValidationError("Unknown fields", [f"cannot update field: {key}" for key in unknown])
            supplied = {key: value for key, value in changes.items() if not _is_blank(value)}
            if not supplied:
                raise ValidationError("At least one field is required")

            if "type" in supplied:
                entry.entry_type = self._parse_manual_type(supplied["type"])
            if "amount" in supplied:
                entry.amount = parse_money(supplied["amount"], self.currency)
            if "description" in supplied:
                entry.description = str(supplied["description"]).strip()
            if "date" in supplied:
                entry.entry_date = parse_date(supplied["date"], "date")

            entry.updated_at = datetime.now(timezone.utc)
            self._save_entry(entry)

        self.audit_trail.record(actor_id, AuditAction.UPDATE_TRANSACTION, f"Updated transaction {entry_id}")
        return entry

    def remove(self, entry_id: int, actor_id: Optional[Any] = None) -> None:
        """
        Delete a manual entry

        Raises:
            NotFoundError: unknown entry
            ForbiddenError: the entry was generated by the system
        """
        with self.storage.atomic():
            self._load_for_mutation(entry_id, "deleted")
            self.storage.delete(self.table_name, entry_id)

        self.audit_trail.record(actor_id, AuditAction.DELETE_TRANSACTION, f"Deleted transaction {entry_id}")

    # System postings, called by the lifecycle and the repayment tracker
    # inside their own transactions

    def post_disbursement(self, application_id: int, applicant_name: str,
                          amount: Money, on_date: date) -> CashFlowEntry:
        return self._create_entry(
            CashFlowType.LOAN_DISBURSEMENT, amount,
            f"Loan disbursement to {applicant_name}", on_date, related_id=application_id
        )

    def post_repayment(self, application_id: int, applicant_name: str,
                       amount: Money, on_date: date) -> CashFlowEntry:
        return self._create_entry(
            CashFlowType.LOAN_REPAYMENT, amount,
            f"Loan repayment from {applicant_name}", on_date, related_id=application_id
        )

    def remove_for_application(self, application_id: int) -> int:
        """Delete every entry linked to an application, system entries included"""
        rows = self.storage.find(self.table_name, {'related_id': application_id})
        for row in rows:
            self.storage.delete(self.table_name, row['id'])
        return len(rows)

    # Queries

    def get_entry(self, entry_id: int) -> Optional[CashFlowEntry]:
        data = self.storage.load(self.table_name, entry_id)
        if data:
            return self._entry_from_dict(data)
        return None

    def list_entries(self) -> List[CashFlowEntry]:
        """All entries, most recent date first"""
        entries = self._all_entries()
        entries.sort(key=lambda e: (e.entry_date, e.id), reverse=True)
        return entries

    def query(self, start: Union[date, str], end: Union[date, str]) -> List[CashFlowEntry]:
        """Entries dated within [start, end], oldest first"""
        start_date = parse_date(start, "start_date")
        end_date = parse_date(end, "end_date")
        if start_date > end_date:
            raise ValidationError("Invalid date range", ["start_date must not be after end_date"])

        entries = [e for e in self._all_entries() if start_date <= e.entry_date <= end_date]
        entries.sort(key=lambda e: (e.entry_date, e.id))
        return entries

    def entries_for(self, related_id: int) -> List[CashFlowEntry]:
        rows = self.storage.find(self.table_name, {'related_id': related_id})
        return [self._entry_from_dict(row) for row in rows]

    def summaries(self, entries: Optional[List[CashFlowEntry]] = None) -> CashFlowTotals:
        """Total income (income + repayments) and total expense (expenses + disbursements)"""
        if entries is None:
            entries = self._all_entries()
        income = Money.sum((e.amount for e in entries if e.entry_type.is_inflow), self.currency)
        expense = Money.sum((e.amount for e in entries if not e.entry_type.is_inflow), self.currency)
        return CashFlowTotals(total_income=income, total_expense=expense)

    # Internals

    def _parse_manual_type(self, value: Union[CashFlowType, str]) -> CashFlowType:
        try:
            kind = value if isinstance(value, CashFlowType) else CashFlowType(str(value).strip())
        except ValueError:
            kind = None
        if kind not in MANUAL_TYPES:
            raise ValidationError("Type must be income or expense", [f"invalid type: {value}"])
        return kind

    def _load_for_mutation(self, entry_id: int, verb: str) -> CashFlowEntry:
        data = self.storage.load_for_update(self.table_name, entry_id)
        if data is None:
            raise NotFoundError("Transaction", entry_id)
        entry = self._entry_from_dict(data)
        if entry.is_system:
            logger.warning("Refused to alter system transaction %s (%s)", entry_id, entry.entry_type.value)
            raise ForbiddenError(
                f"System-generated transactions cannot be {verb}",
                {'id': entry_id, 'type': entry.entry_type.value}
            )
        return entry

    def _create_entry(self, kind: CashFlowType, amount: Money, description: str,
                      on_date: date, related_id: Optional[int] = None) -> CashFlowEntry:
        now = datetime.now(timezone.utc)
        entry = CashFlowEntry(
            id=self.storage.next_id(self.table_name),
            created_at=now,
            updated_at=now,
            entry_type=kind,
            amount=amount,
            description=description,
            entry_date=on_date,
            related_id=related_id
        )
        self._save_entry(entry)
        logger.info("Recorded %s entry %s of %s", kind.value, entry.id, amount.to_string())
        return entry

    def _all_entries(self) -> List[CashFlowEntry]:
        return [self._entry_from_dict(row) for row in self.storage.load_all(self.table_name)]

    def _save_entry(self, entry: CashFlowEntry) -> None:
        self.storage.save(self.table_name, entry.id, self._entry_to_dict(entry))

    def _entry_to_dict(self, entry: CashFlowEntry) -> Dict:
        return {
            'id': entry.id,
            'created_at': entry.created_at.isoformat(),
            'updated_at': entry.updated_at.isoformat(),
            'type': entry.entry_type.value,
            'amount': str(entry.amount.amount),
            'currency': entry.amount.currency.code,
            'description': entry.description,
            'date': entry.entry_date.isoformat(),
            'related_id': entry.related_id
        }

    def _entry_from_dict(self, data: Dict) -> CashFlowEntry:
        return CashFlowEntry(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            entry_type=CashFlowType(data['type']),
            amount=Money(Decimal(data['amount']), Currency[data['currency']]),
            description=data['description'],
            entry_date=date.fromisoformat(data['date']),
            related_id=data.get('related_id')
        )
