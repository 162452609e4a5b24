# wareneingang/domain/models.py

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional


class DeliveryStatus:
    CAPTURED = "captured"
    CHECKED = "checked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ALL = (CAPTURED, CHECKED, COMPLETED, CANCELLED)


@dataclass
class Supplier:
    """
    A supplier in the directory. All fields are mandatory.
    """
    id: Optional[str]  # generated by the store, None before insert
    name: str
    contact_person: str
    supplier_number: str
    email: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Supplier":
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            name=row.get("name") or "",
            contact_person=row.get("contact_person") or "",
            supplier_number=row.get("supplier_number") or "",
            email=row.get("email") or "",
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "contact_person": self.contact_person,
            "supplier_number": self.supplier_number,
            "email": self.email,
        }


@dataclass
class DeliveryRecord:
    """
    One goods-receipt event tied to a supplier and an arrival date.

    captured_at is assigned by the database on insert and never written
    by the application afterwards.
    """
    id: Optional[str]
    supplier_id: str
    arrival_date: date
    captured_at: Optional[datetime] = None
    batch_number: Optional[str] = None
    notes: Optional[str] = None
    delivery_note_urls: List[str] = field(default_factory=list)
    goods_photo_urls: List[str] = field(default_factory=list)
    recognized_text: Optional[str] = None
    status: str = DeliveryStatus.CAPTURED

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DeliveryRecord":
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            supplier_id=str(row.get("supplier_id") or ""),
            arrival_date=_parse_date(row.get("arrival_date")),
            captured_at=_parse_datetime(row.get("captured_at")),
            batch_number=row.get("batch_number") or None,
            notes=row.get("notes") or None,
            delivery_note_urls=list(row.get("delivery_note_urls") or []),
            goods_photo_urls=list(row.get("goods_photo_urls") or []),
            recognized_text=row.get("recognized_text") or None,
            status=row.get("status") or DeliveryStatus.CAPTURED,
        )

    def to_insert_row(self) -> Dict[str, Any]:
        # captured_at and status are left to the database defaults
        return {
            "supplier_id": self.supplier_id,
            "arrival_date": self.arrival_date.isoformat(),
            "batch_number": self.batch_number,
            "notes": self.notes,
            "delivery_note_urls": list(self.delivery_note_urls),
            "goods_photo_urls": list(self.goods_photo_urls),
            "recognized_text": self.recognized_text,
        }


@dataclass
class SearchParams:
    """
    Search filters. Everything except search_text is pushed to the
    database query; search_text is matched locally on notes and
    recognized text.
    """
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    supplier_id: Optional[str] = None
    batch_number: Optional[str] = None
    search_text: Optional[str] = None


@dataclass
class ImageFile:
    name: str
    content: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class DeliveryDraft:
    """
    Transient, in-memory state of the capture form until submission.
    """
    arrival_date: date
    suggested_batch_number: str
    supplier_id: Optional[str] = None
    batch_number: Optional[str] = None  # set by the user or detected by OCR
    notes: str = ""
    delivery_note_urls: List[str] = field(default_factory=list)
    goods_photo_urls: List[str] = field(default_factory=list)
    recognized_text: str = ""

    @property
    def effective_batch_number(self) -> str:
        return self.batch_number or self.suggested_batch_number


_FRACTION = re.compile(r"\.(\d+)")


def _parse_date(val: Any) -> date:
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    if not val:
        raise ValueError("arrival_date is missing")
    return date.fromisoformat(str(val)[:10])


def _parse_datetime(val: Any) -> Optional[datetime]:
    if val is None or isinstance(val, datetime):
        return val
    # PostgREST returns e.g. "2024-06-07T08:15:00.12345+00:00" (trailing zeros
    # of the fraction dropped) or a trailing "Z"; fromisoformat before 3.11
    # only takes 3 or 6 fraction digits
    text = str(val).replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + m.group(1).ljust(6, "0")[:6], text, count=1)
    return datetime.fromisoformat(text)
