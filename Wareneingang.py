import logging
from typing import List

import streamlit as st

from domain.models import ImageFile
from element_component import (
    confirmation_dialog,
    login_form,
    script_thread_initializer,
    supplier_select,
    upload_progress,
)
from services.auth_service import AuthError
from services.delivery_form_service import DraftLockedError
from session import (
    configure_logging,
    get_app_data,
    get_auth,
    get_notifier,
    get_workflow,
)
from utils.formatting import format_date_de

configure_logging()
logger = logging.getLogger(__name__)

st.set_page_config(
    page_title="Wareneingang Obst & Gemüse",
    page_icon="🥕",
)

notify = get_notifier()
auth = get_auth()

if not auth.is_authenticated:
    login_form(auth, notify)
    notify.flush()
    st.stop()

# -----------------------------------------------------------------------------
# Sidebar: user + sign out
# -----------------------------------------------------------------------------
user = auth.current_user
st.sidebar.header("🥕 Wareneingang")
st.sidebar.caption(getattr(user, "email", "") or "")

if st.sidebar.button("Abmelden"):
    if "workflow" in st.session_state:
        st.session_state["workflow"].cancel_uploads()
    try:
        auth.sign_out()
        notify("Erfolgreich abgemeldet", "success")
    except AuthError as e:
        logger.error("Sign-out failed: %s", e)
        notify(str(e), "error")
    for k in ("app_data", "workflow", "search_controller", "loader"):
        st.session_state.pop(k, None)
    st.rerun()

data = get_app_data()
workflow = get_workflow()

if "form_gen" not in st.session_state:
    st.session_state["form_gen"] = 0
gen = st.session_state["form_gen"]


def _key(name: str) -> str:
    return f"{name}_{gen}"


def _to_image_files(uploaded) -> List[ImageFile]:
    return [
        ImageFile(name=f.name, content=f.getvalue(), mime_type=f.type or "")
        for f in uploaded or []
    ]


# -----------------------------------------------------------------------------
# Callbacks (run before the page is drawn again)
# -----------------------------------------------------------------------------
def _sync_field(setter, key: str) -> None:
    try:
        setter(st.session_state[key])
    except DraftLockedError as e:
        notify(str(e), "warning")


def _upload_delivery_notes() -> None:
    files = _to_image_files(st.session_state.get(_key("note_files")))
    if not files:
        return
    workflow.add_delivery_notes(
        files,
        with_ocr=st.session_state.get(_key("with_ocr"), True),
        on_progress=upload_progress(files),
        thread_initializer=script_thread_initializer(),
    )
    # new widget keys: empties the uploader and shows an OCR batch number
    st.session_state["form_gen"] += 1


def _upload_goods_photos() -> None:
    files = _to_image_files(st.session_state.get(_key("goods_files")))
    if not files:
        return
    workflow.add_goods_photos(
        files,
        on_progress=upload_progress(files),
        thread_initializer=script_thread_initializer(),
    )
    st.session_state["form_gen"] += 1


def _discard() -> None:
    workflow.cancel_uploads()
    workflow.reset()
    st.session_state["form_gen"] += 1
    notify("Entwurf verworfen", "info")


def _submit() -> bool:
    record = workflow.submit(confirmed=True)
    if record is None:
        return False
    st.session_state["form_gen"] += 1
    data.deliveries.insert(0, record)
    supplier = next((s for s in data.suppliers if s.id == record.supplier_id), None)
    notify(
        f"Der Wareneingang von {supplier.name if supplier else 'unbekannt'} wurde erfolgreich erfasst.",
        "success",
    )
    return True


# -----------------------------------------------------------------------------
# Form
# -----------------------------------------------------------------------------
st.title("🥕 Wareneingang Obst & Gemüse")
draft = workflow.draft

supplier_select(
    "Lieferant",
    data.suppliers,
    key=_key("supplier"),
    selected=draft.supplier_id,
    on_change=lambda: _sync_field(workflow.set_supplier, _key("supplier")),
)

st.date_input(
    "Eingangsdatum",
    value=draft.arrival_date,
    format="DD.MM.YYYY",
    key=_key("arrival_date"),
    on_change=lambda: _sync_field(workflow.set_arrival_date, _key("arrival_date")),
)

st.text_input(
    "Chargennummer",
    value=draft.batch_number or "",
    placeholder=f"z.B. {draft.suggested_batch_number}",
    help=f"Fortlaufende Nummer für {format_date_de(draft.arrival_date)}: {draft.suggested_batch_number}",
    key=_key("batch_number"),
    on_change=lambda: _sync_field(workflow.set_batch_number, _key("batch_number")),
)

st.text_area(
    "Notizen",
    value=draft.notes,
    key=_key("notes"),
    on_change=lambda: _sync_field(workflow.set_notes, _key("notes")),
)

st.divider()

# -----------------------------------------------------------------------------
# Delivery notes (OCR) and goods photos
# -----------------------------------------------------------------------------
st.subheader("Lieferschein (optional)")
st.file_uploader(
    "Lieferscheine auswählen",
    type=["jpg", "jpeg", "png", "webp", "heic"],
    accept_multiple_files=True,
    key=_key("note_files"),
)
st.checkbox("Texterkennung (OCR)", value=True, key=_key("with_ocr"))
st.button("Lieferscheine hochladen", on_click=_upload_delivery_notes)

for i, url in enumerate(draft.delivery_note_urls, start=1):
    col_img, col_remove = st.columns([4, 1])
    with col_img:
        st.image(url, caption=f"Lieferschein {i}", width=200)
    with col_remove:
        if st.button("Entfernen", key=f"rm_note_{gen}_{i}"):
            workflow.remove_delivery_note(url)
            st.rerun()

st.subheader("Warenfotos (optional)")
st.file_uploader(
    "Warenfotos auswählen",
    type=["jpg", "jpeg", "png", "webp", "heic"],
    accept_multiple_files=True,
    key=_key("goods_files"),
)
st.button("Warenfotos hochladen", on_click=_upload_goods_photos)

for i, url in enumerate(draft.goods_photo_urls, start=1):
    col_img, col_remove = st.columns([4, 1])
    with col_img:
        st.image(url, caption=f"Ware {i}", width=200)
    with col_remove:
        if st.button("Entfernen", key=f"rm_goods_{gen}_{i}"):
            workflow.remove_goods_photo(url)
            st.rerun()

if draft.recognized_text:
    with st.expander("Erkannter Text", expanded=False):
        st.text(draft.recognized_text)

st.divider()

# -----------------------------------------------------------------------------
# Submit
# -----------------------------------------------------------------------------
if st.button("Wareneingang speichern", type="primary", disabled=workflow.uploads_in_flight > 0):
    if not draft.supplier_id:
        st.error("Bitte einen Lieferanten wählen.")
    else:
        supplier = next((s for s in data.suppliers if s.id == draft.supplier_id), None)
        confirmation_dialog(
            "Möchten Sie den Wareneingang wirklich speichern?",
            {
                "Lieferant": supplier.name if supplier else "",
                "Eingangsdatum": format_date_de(draft.arrival_date),
                "Chargennummer": draft.effective_batch_number,
                "Lieferscheine": len(draft.delivery_note_urls),
                "Warenfotos": len(draft.goods_photo_urls),
            },
            _submit,
        )

st.button("Entwurf verwerfen", on_click=_discard)

notify.flush()
