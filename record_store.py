import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from domain.models import DeliveryRecord, SearchParams, Supplier
from supabase_client import get_client, get_schema

logger = logging.getLogger(__name__)

SUPPLIER_TABLE = "supplier"
DELIVERY_TABLE = "delivery_record"


def _table(table_name: str):
    return get_client().schema(get_schema()).table(table_name)


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

def fetch_suppliers() -> Tuple[bool, str, List[Supplier]]:
    """
    Returns (ok, message, suppliers) ordered by name.
    """
    try:
        resp = _table(SUPPLIER_TABLE).select("*").order("name").execute()

        if getattr(resp, "error", None):
            return False, f"Fetch suppliers failed: {resp.error}", []

        return True, "Fetched", [Supplier.from_row(row) for row in resp.data or []]

    except Exception as e:
        logger.error("Fehler beim Laden der Lieferanten: %s", e)
        return False, f"Fehler beim Laden der Lieferanten: {e}", []


def insert_supplier(supplier: Supplier) -> Tuple[bool, str, Optional[Supplier]]:
    """
    Insert a new supplier.
    Returns (ok, message, inserted_supplier)
    """
    try:
        resp = _table(SUPPLIER_TABLE).insert(supplier.to_row()).execute()

        if getattr(resp, "error", None):
            return False, f"Insert failed: {resp.error}", None

        if not resp.data:
            return False, "Insert failed: no data returned", None

        inserted = Supplier.from_row(resp.data[0])
        logger.info("Supplier %s created (id=%s)", inserted.name, inserted.id)
        return True, "Inserted", inserted

    except Exception as e:
        logger.error("Fehler beim Anlegen des Lieferanten: %s", e)
        return False, f"Fehler beim Anlegen des Lieferanten: {e}", None


def update_supplier(supplier_id: str, supplier: Supplier) -> Tuple[bool, str]:
    try:
        payload = {
            **supplier.to_row(),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        resp = _table(SUPPLIER_TABLE).update(payload).eq("id", supplier_id).execute()

        if getattr(resp, "error", None):
            return False, f"Update failed: {resp.error}"

        if not resp.data:
            return False, f"Lieferant {supplier_id} nicht gefunden"

        return True, "Updated"

    except Exception as e:
        logger.error("Fehler beim Aktualisieren des Lieferanten %s: %s", supplier_id, e)
        return False, f"Fehler beim Aktualisieren des Lieferanten: {e}"


def delete_supplier(supplier_id: str) -> Tuple[bool, str]:
    """
    Delete immediately. Delivery records referencing the supplier are
    left untouched.
    """
    try:
        resp = _table(SUPPLIER_TABLE).delete().eq("id", supplier_id).execute()

        if getattr(resp, "error", None):
            return False, f"Delete failed: {resp.error}"

        return True, "Deleted"

    except Exception as e:
        logger.error("Fehler beim Löschen des Lieferanten %s: %s", supplier_id, e)
        return False, f"Fehler beim Löschen des Lieferanten: {e}"


# ---------------------------------------------------------------------------
# Delivery records
# ---------------------------------------------------------------------------

def _to_records(rows: Optional[List[Dict[str, Any]]]) -> List[DeliveryRecord]:
    return [DeliveryRecord.from_row(row) for row in rows or []]


def fetch_deliveries() -> Tuple[bool, str, List[DeliveryRecord]]:
    """
    All delivery records, newest arrival date first.
    """
    try:
        resp = (
            _table(DELIVERY_TABLE)
            .select("*")
            .order("arrival_date", desc=True)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Fetch deliveries failed: {resp.error}", []

        return True, "Fetched", _to_records(resp.data)

    except Exception as e:
        logger.error("Fehler beim Laden der Wareneingänge: %s", e)
        return False, f"Fehler beim Laden der Wareneingänge: {e}", []


def fetch_delivery(delivery_id: str) -> Tuple[bool, str, Optional[DeliveryRecord]]:
    try:
        resp = (
            _table(DELIVERY_TABLE)
            .select("*")
            .eq("id", delivery_id)
            .limit(1)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Fetch delivery failed: {resp.error}", None

        if not resp.data:
            return False, f"Wareneingang {delivery_id} nicht gefunden", None

        return True, "Fetched", DeliveryRecord.from_row(resp.data[0])

    except Exception as e:
        logger.error("Fehler beim Laden des Wareneingangs %s: %s", delivery_id, e)
        return False, f"Fehler beim Laden des Wareneingangs: {e}", None


def fetch_deliveries_for_date(day: date) -> Tuple[bool, str, List[DeliveryRecord]]:
    """
    Records whose arrival date falls on the given calendar day.
    """
    try:
        resp = (
            _table(DELIVERY_TABLE)
            .select("*")
            .eq("arrival_date", day.isoformat())
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Fetch deliveries failed: {resp.error}", []

        return True, "Fetched", _to_records(resp.data)

    except Exception as e:
        logger.error("Fehler beim Laden der Wareneingänge für %s: %s", day, e)
        return False, f"Fehler beim Laden der Wareneingänge: {e}", []


def insert_delivery(record: DeliveryRecord) -> Tuple[bool, str, Optional[DeliveryRecord]]:
    """
    Create a delivery record in one call. The database assigns id,
    captured_at and the initial status.
    """
    try:
        resp = _table(DELIVERY_TABLE).insert(record.to_insert_row()).execute()

        if getattr(resp, "error", None):
            return False, f"Insert failed: {resp.error}", None

        if not resp.data:
            return False, "Insert failed: no data returned", None

        inserted = DeliveryRecord.from_row(resp.data[0])
        logger.info(
            "Delivery %s created for supplier %s (batch %s)",
            inserted.id,
            inserted.supplier_id,
            inserted.batch_number,
        )
        return True, "Inserted", inserted

    except Exception as e:
        logger.error("Fehler beim Anlegen des Wareneingangs: %s", e)
        return False, f"Fehler beim Anlegen des Wareneingangs: {e}", None


def matches_text(record: DeliveryRecord, search_text: str) -> bool:
    needle = search_text.lower()
    return (
        needle in (record.notes or "").lower()
        or needle in (record.recognized_text or "").lower()
    )


def filter_by_text(records: List[DeliveryRecord], search_text: Optional[str]) -> List[DeliveryRecord]:
    if not search_text:
        return list(records)
    return [r for r in records if matches_text(r, search_text)]


def search_deliveries(params: SearchParams) -> Tuple[bool, str, List[DeliveryRecord]]:
    """
    Date range, supplier and batch number go to the database; the free
    text is matched afterwards on notes and recognized text.
    """
    try:
        query = _table(DELIVERY_TABLE).select("*")

        if params.start_date:
            query = query.gte("arrival_date", params.start_date.isoformat())
        if params.end_date:
            query = query.lte("arrival_date", params.end_date.isoformat())
        if params.supplier_id:
            query = query.eq("supplier_id", params.supplier_id)
        if params.batch_number:
            query = query.eq("batch_number", params.batch_number)

        resp = query.order("arrival_date", desc=True).execute()

        if getattr(resp, "error", None):
            return False, f"Search failed: {resp.error}", []

        results = filter_by_text(_to_records(resp.data), params.search_text)
        return True, "Fetched", results

    except Exception as e:
        logger.error("Fehler bei der Suche: %s", e)
        return False, f"Fehler bei der Suche: {e}", []
