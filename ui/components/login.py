"""Sign-in form shown before any page is reachable."""

from __future__ import annotations

import requests
import streamlit as st

from ui import api


def render() -> None:
    """Render the login form and store the bearer token on success."""
    st.title("🗒️ Duo")
    st.caption("Sign in to your notes")

    with st.form("login"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Sign in", use_container_width=True)

    if not submitted:
        return

    try:
        result = api.login(email.strip(), password)
    except requests.ConnectionError:
        st.error(
            "Cannot reach the backend API. "
            "Make sure the FastAPI server is running on port 8000."
        )
        return
    except api.ApiError as e:
        st.error(str(e))
        return

    st.session_state.token = result["token"]
    st.session_state.user = result["user"]
    st.rerun()
