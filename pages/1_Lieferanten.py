import re

import streamlit as st

import record_store
from domain.models import Supplier
from element_component import confirmation_dialog
from session import get_app_data, get_notifier, require_user

st.set_page_config(
    page_title="Lieferanten",
    page_icon="🚚",
)

st.sidebar.header("🚚 Lieferanten")

notify = get_notifier()
require_user()
data = get_app_data()

if "editing_supplier" not in st.session_state:
    st.session_state["editing_supplier"] = None

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def validate_supplier(supplier: Supplier):
    for label, val in (
            ("Name", supplier.name),
            ("Ansprechpartner", supplier.contact_person),
            ("Nummer", supplier.supplier_number),
            ("E-Mail", supplier.email),
    ):
        if not val:
            return False, f"{label} darf nicht leer sein"
    if not re.match(EMAIL_PATTERN, supplier.email):
        return False, f"E-Mail '{supplier.email}' ist ungültig"
    return True, ""


def _delete(supplier: Supplier) -> bool:
    ok, msg = record_store.delete_supplier(supplier.id)
    if not ok:
        notify(f"Fehler beim Löschen: {msg}", "error")
        return False
    data.suppliers[:] = [s for s in data.suppliers if s.id != supplier.id]
    notify("Lieferant erfolgreich gelöscht", "success")
    return True


# -------------------------------------------------------------------
# Create / edit form
# -------------------------------------------------------------------

editing: Supplier = st.session_state["editing_supplier"]
st.subheader("Lieferant bearbeiten" if editing else "Neuer Lieferant")

form_key = f"supplier_form_{editing.id if editing else 'new'}"
with st.form(form_key, enter_to_submit=False, clear_on_submit=not editing):
    name = st.text_input("Name", value=editing.name if editing else "")
    contact_person = st.text_input("Ansprechpartner", value=editing.contact_person if editing else "")
    supplier_number = st.text_input("Nummer", value=editing.supplier_number if editing else "")
    email = st.text_input("E-Mail", value=editing.email if editing else "")

    col_save, col_cancel = st.columns(2)
    with col_save:
        submitted = st.form_submit_button(
            "Änderungen speichern" if editing else "Lieferant anlegen",
            type="primary",
        )
    with col_cancel:
        cancelled = st.form_submit_button("Abbrechen", disabled=not editing)

if cancelled:
    st.session_state["editing_supplier"] = None
    st.rerun()

if submitted:
    supplier = Supplier(
        id=editing.id if editing else None,
        name=name.strip(),
        contact_person=contact_person.strip(),
        supplier_number=supplier_number.strip(),
        email=email.strip(),
    )
    is_valid, message = validate_supplier(supplier)

    if not is_valid:
        st.error(message)
    elif editing:
        ok, msg = record_store.update_supplier(editing.id, supplier)
        if ok:
            data.suppliers[:] = [supplier if s.id == editing.id else s for s in data.suppliers]
            st.session_state["editing_supplier"] = None
            notify("Lieferant erfolgreich aktualisiert", "success")
            st.rerun()
        else:
            st.error(f"Fehler beim Aktualisieren: {msg}")
    else:
        ok, msg, inserted = record_store.insert_supplier(supplier)
        if ok:
            data.suppliers.append(inserted)
            notify("Lieferant erfolgreich angelegt", "success")
            st.rerun()
        else:
            st.error(f"Fehler beim Anlegen: {msg}")

st.divider()

# -------------------------------------------------------------------
# Directory
# -------------------------------------------------------------------

st.subheader("Lieferantenliste")

if not data.suppliers:
    st.info("Keine Lieferanten vorhanden.")

for supplier in data.suppliers:
    col_info, col_edit, col_delete = st.columns([4, 1, 1])
    with col_info:
        st.markdown(
            f"**{supplier.name}**  \n"
            f"{supplier.contact_person} · Nr. {supplier.supplier_number} · {supplier.email}"
        )
    with col_edit:
        if st.button("Bearbeiten", key=f"edit_{supplier.id}"):
            st.session_state["editing_supplier"] = supplier
            st.rerun()
    with col_delete:
        if st.button("Löschen", key=f"delete_{supplier.id}"):
            confirmation_dialog(
                f"Möchten Sie den Lieferanten {supplier.name} wirklich löschen?",
                {"Name": supplier.name, "Nummer": supplier.supplier_number},
                lambda s=supplier: _delete(s),
            )

notify.flush()
