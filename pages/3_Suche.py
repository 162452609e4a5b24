import streamlit as st

from element_component import archive_table, supplier_select
from session import get_app_data, get_notifier, get_search_controller, require_user

st.set_page_config(
    page_title="Suche",
    page_icon="🔍",
)

st.sidebar.header("🔍 Suche")

notify = get_notifier()
require_user()
data = get_app_data()
controller = get_search_controller()


def _changed(field: str, key: str) -> None:
    controller.update(**{field: st.session_state[key]})


col_from, col_to = st.columns(2)
with col_from:
    st.date_input(
        "Von",
        value=None,
        format="DD.MM.YYYY",
        key="search_start_date",
        on_change=_changed,
        args=("start_date", "search_start_date"),
    )
with col_to:
    st.date_input(
        "Bis",
        value=None,
        format="DD.MM.YYYY",
        key="search_end_date",
        on_change=_changed,
        args=("end_date", "search_end_date"),
    )

col_supplier, col_batch = st.columns(2)
with col_supplier:
    supplier_select(
        "Lieferant",
        data.suppliers,
        key="search_supplier",
        placeholder="Alle Lieferanten",
        on_change=lambda: _changed("supplier_id", "search_supplier"),
    )
with col_batch:
    st.text_input(
        "Chargennummer",
        key="search_batch_number",
        on_change=_changed,
        args=("batch_number", "search_batch_number"),
    )

st.text_input(
    "Suche in allen Daten (Notizen, OCR-Text, etc.)",
    key="search_text",
    on_change=_changed,
    args=("search_text", "search_text"),
)


# the search itself runs on a timer thread; poll for its results
@st.fragment(run_every=0.5)
def search_results():
    if controller.searching:
        st.caption("Suche läuft...")
    if controller.error:
        st.error(controller.error)
    archive_table(controller.results, data.suppliers, key="search")


search_results()

notify.flush()
