import streamlit as st

from element_component import archive_table
from session import get_app_data, get_notifier, require_user

st.set_page_config(
    page_title="Archiv",
    page_icon="🗂️",
)

st.sidebar.header("🗂️ Archiv")

notify = get_notifier()
require_user()

reload_clicked = st.sidebar.button("Neu laden")
data = get_app_data(force=reload_clicked)

st.title("🗂️ Archiv")
st.caption(f"{len(data.deliveries)} Wareneingänge")

archive_table(data.deliveries, data.suppliers, key="archive")

notify.flush()
