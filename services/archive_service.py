# services/archive_service.py
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from domain.models import DeliveryRecord, Supplier

SORT_ARRIVAL_DATE = "arrival_date"
SORT_SUPPLIER = "supplier"
SORT_BATCH_NUMBER = "batch_number"

SORT_FIELDS = (SORT_ARRIVAL_DATE, SORT_SUPPLIER, SORT_BATCH_NUMBER)


@dataclass(frozen=True)
class SortState:
    field: str = SORT_ARRIVAL_DATE
    descending: bool = True


def toggle_sort(state: SortState, field: str) -> SortState:
    """
    Same field flips the direction, a new field starts ascending.
    """
    if field not in SORT_FIELDS:
        raise ValueError(f"Unknown sort field: {field}")
    if field == state.field:
        return SortState(field=field, descending=not state.descending)
    return SortState(field=field, descending=False)


def supplier_names(suppliers: Iterable[Supplier]) -> Dict[str, str]:
    return {s.id: s.name for s in suppliers if s.id is not None}


def sort_deliveries(
        deliveries: Iterable[DeliveryRecord],
        suppliers: Iterable[Supplier],
        state: SortState,
) -> List[DeliveryRecord]:
    """
    Stable sort. Unknown suppliers sort as an empty name.
    """
    names = supplier_names(suppliers)

    if state.field == SORT_ARRIVAL_DATE:
        def key(d: DeliveryRecord):
            return d.arrival_date
    elif state.field == SORT_SUPPLIER:
        def key(d: DeliveryRecord):
            return names.get(d.supplier_id, "").casefold()
    else:
        def key(d: DeliveryRecord):
            return (d.batch_number or "").casefold()

    return sorted(deliveries, key=key, reverse=state.descending)


def image_links(delivery: DeliveryRecord) -> List[Tuple[str, str]]:
    """
    [(label, url), ...] with delivery notes first, numbered across both lists.
    """
    images = [("Lieferschein", url) for url in delivery.delivery_note_urls]
    images += [("Ware", url) for url in delivery.goods_photo_urls]
    return [(f"{kind} {i}", url) for i, (kind, url) in enumerate(images, start=1)]
