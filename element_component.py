import threading
from typing import Callable, List, Optional, Tuple

import pandas as pd
import streamlit as st
from streamlit.runtime.scriptrunner import add_script_run_ctx, get_script_run_ctx

from domain.models import DeliveryRecord, ImageFile, Supplier
from services.archive_service import (
    SORT_ARRIVAL_DATE,
    SORT_BATCH_NUMBER,
    SORT_SUPPLIER,
    SortState,
    image_links,
    sort_deliveries,
    supplier_names,
    toggle_sort,
)
from services.auth_service import AuthContext, AuthError
from utils.formatting import format_date_de

TOAST_ICONS = {
    "info": "ℹ️",
    "success": "✅",
    "warning": "⚠️",
    "error": "❌",
}


class ToastQueue:
    """
    Notifier that can be called from worker threads; messages are shown
    with st.toast on the next flush() from the script thread.
    """

    def __init__(self):
        self._messages: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def __call__(self, message: str, kind: str = "info") -> None:
        with self._lock:
            self._messages.append((message, kind))

    def flush(self) -> None:
        with self._lock:
            messages, self._messages = self._messages, []
        for message, kind in messages:
            st.toast(message, icon=TOAST_ICONS.get(kind, TOAST_ICONS["info"]))


def script_thread_initializer() -> Callable[[], None]:
    """
    Lets worker threads started from this script run draw into the page.
    """
    ctx = get_script_run_ctx()

    def attach() -> None:
        add_script_run_ctx(threading.current_thread(), ctx)

    return attach


def upload_progress(files: List[ImageFile]) -> Callable[[str, float], None]:
    """
    One progress bar per file; the returned callback takes (filename, percent).
    """
    bars = {f.name: st.progress(0, text=f"{f.name}: 0 %") for f in files}

    def update(name: str, percent: float) -> None:
        bar = bars.get(name)
        if bar is not None:
            bar.progress(min(int(percent), 100), text=f"{name}: {percent:.0f} %")

    return update


@st.dialog("Bestätigung")
def confirmation_dialog(question: str, details: dict, on_confirm: Callable[[], bool]):
    st.write(question)
    if details:
        df = pd.DataFrame(list(details.items()), columns=["Feld", "Wert"])
        df["Wert"] = df["Wert"].astype("string")
        st.dataframe(df, hide_index=True)

    col_yes, col_no = st.columns(2)

    with col_yes:
        if st.button("Ja", type="primary", key="confirm_yes"):
            on_confirm()
            st.rerun()
    with col_no:
        if st.button("Abbrechen", key="confirm_no"):
            st.rerun()


def login_form(auth: AuthContext, notify) -> None:
    st.title("🥕 Wareneingang System")

    registering = st.toggle("Neuen Account erstellen", key="auth_registering")
    st.caption("Neuen Account erstellen" if registering else "Bitte melden Sie sich an")

    with st.form("auth_form", enter_to_submit=True):
        email = st.text_input("E-Mail Adresse")
        password = st.text_input("Passwort", type="password")
        password_confirm = (
            st.text_input("Passwort bestätigen", type="password") if registering else None
        )
        submitted = st.form_submit_button("Registrieren" if registering else "Anmelden")

    if not submitted:
        return

    try:
        if registering:
            auth.sign_up(email, password, password_confirm)
            notify("Registrierung erfolgreich", "success")
        else:
            auth.sign_in(email, password)
            notify("Erfolgreich angemeldet", "success")
    except AuthError as e:
        st.error(f"{e}: Bitte überprüfen Sie Ihre Eingaben")
        return

    st.rerun()


def load_error_prompt(message: str, on_retry: Callable[[], None]) -> None:
    st.error(f"Fehler beim Laden der Daten: {message}")
    if st.button("Erneut versuchen", type="primary"):
        on_retry()
        st.rerun()
    st.stop()


@st.dialog("Bildvorschau", width="large")
def image_preview(label: str, url: str):
    st.caption(label)
    st.image(url)
    st.link_button("Original öffnen", url)


def _sort_button(label: str, field: str, state_key: str) -> None:
    state: SortState = st.session_state[state_key]
    arrow = ""
    if state.field == field:
        arrow = " ↓" if state.descending else " ↑"
    if st.button(f"{label}{arrow}", key=f"{state_key}_{field}"):
        st.session_state[state_key] = toggle_sort(state, field)
        st.rerun()


def archive_table(
        deliveries: List[DeliveryRecord],
        suppliers: List[Supplier],
        key: str = "archive",
) -> None:
    state_key = f"{key}_sort"
    if state_key not in st.session_state:
        st.session_state[state_key] = SortState()

    col_date, col_supplier, col_batch = st.columns(3)
    with col_date:
        _sort_button("Datum", SORT_ARRIVAL_DATE, state_key)
    with col_supplier:
        _sort_button("Lieferant", SORT_SUPPLIER, state_key)
    with col_batch:
        _sort_button("Chargennummer", SORT_BATCH_NUMBER, state_key)

    rows = sort_deliveries(deliveries, suppliers, st.session_state[state_key])

    if not rows:
        st.info("Keine Wareneingänge vorhanden.")
        return

    names = supplier_names(suppliers)
    df = pd.DataFrame(
        [
            {
                "Datum": format_date_de(d.arrival_date),
                "Lieferant": names.get(d.supplier_id, ""),
                "Chargennummer": d.batch_number or "-",
                "Notizen": d.notes or "-",
                "Bilder": len(d.delivery_note_urls) + len(d.goods_photo_urls),
            }
            for d in rows
        ]
    )
    st.dataframe(df, width="stretch", hide_index=True)

    with st.expander("Bilder anzeigen"):
        for d in rows:
            links = image_links(d)
            if not links:
                continue
            st.markdown(
                f"**{format_date_de(d.arrival_date)}** · {names.get(d.supplier_id, '')} · "
                f"{d.batch_number or '-'}"
            )
            cols = st.columns(min(len(links), 4))
            for i, (label, url) in enumerate(links):
                with cols[i % len(cols)]:
                    if st.button(label, key=f"{key}_img_{d.id}_{i}"):
                        image_preview(label, url)


def supplier_select(
        label: str,
        suppliers: List[Supplier],
        key: str,
        placeholder: str = "Bitte wählen...",
        on_change: Optional[Callable[[], None]] = None,
        selected: Optional[str] = None,
):
    options = [s.id for s in suppliers]
    names = supplier_names(suppliers)
    return st.selectbox(
        label,
        options=options,
        index=options.index(selected) if selected in options else None,
        format_func=lambda sid: names.get(sid, ""),
        placeholder=placeholder,
        key=key,
        on_change=on_change,
    )
