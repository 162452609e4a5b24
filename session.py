# session.py
# Per-session objects kept in st.session_state, shared by all pages.
import logging
import os
from functools import partial
from typing import Optional

import streamlit as st

import record_store
from element_component import ToastQueue, load_error_prompt
from google_client import authorized_http, get_credentials, get_drive_service, get_root_folder_id
from services.auth_service import AuthContext
from services.data_loader import DataLoadError, InitialDataLoader, LoadedData
from services.delivery_form_service import DeliveryFormWorkflow
from services.search_service import SearchController
from services.upload_service import UploadClient
from supabase_client import new_client

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_notifier() -> ToastQueue:
    if "notifier" not in st.session_state:
        st.session_state["notifier"] = ToastQueue()
    return st.session_state["notifier"]


def get_auth() -> AuthContext:
    # each browser session signs in on its own client; the cached client
    # used by record_store never holds a user session
    if "auth" not in st.session_state:
        st.session_state["auth"] = AuthContext(new_client())
    return st.session_state["auth"]


def require_user():
    """
    Stop the page unless somebody is signed in.
    """
    auth = get_auth()
    if not auth.is_authenticated:
        st.warning("Bitte melden Sie sich auf der Startseite an.")
        st.stop()
    return auth.current_user


def get_loader() -> InitialDataLoader:
    if "loader" not in st.session_state:
        st.session_state["loader"] = InitialDataLoader(record_store, notify=get_notifier())
    return st.session_state["loader"]


def _reload() -> Optional[LoadedData]:
    try:
        data = get_loader().load()
    except DataLoadError as e:
        st.session_state["load_error"] = str(e)
        return None

    if data is not None:
        st.session_state["app_data"] = data
        st.session_state.pop("load_error", None)
    return data


def get_app_data(force: bool = False) -> LoadedData:
    """
    Suppliers and deliveries, loaded once per session. Shows the retry
    prompt and stops the page when loading failed for good.
    """
    if force or "app_data" not in st.session_state:
        with st.spinner("Daten werden geladen..."):
            _reload()

    if "load_error" in st.session_state:
        load_error_prompt(st.session_state["load_error"], _reload)

    if "app_data" not in st.session_state:
        st.stop()
    return st.session_state["app_data"]


def get_workflow() -> DeliveryFormWorkflow:
    if "workflow" not in st.session_state:
        notify = get_notifier()
        creds = get_credentials()
        uploader = UploadClient(
            get_drive_service(creds),
            get_root_folder_id(),
            notify=notify,
            http_factory=partial(authorized_http, creds),
        )
        st.session_state["workflow"] = DeliveryFormWorkflow(record_store, uploader, notify=notify)
    return st.session_state["workflow"]


def get_search_controller() -> SearchController:
    if "search_controller" not in st.session_state:
        controller = SearchController(record_store)
        controller.run_now()
        st.session_state["search_controller"] = controller
    return st.session_state["search_controller"]
