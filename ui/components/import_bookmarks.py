"""Import page: upload a browser bookmark export and show the report."""

from __future__ import annotations

import streamlit as st

from ui import api


def render() -> None:
    """Render the bookmark import page."""
    token = st.session_state.token
    st.title("📥 Import Bookmarks")
    st.markdown(
        "Upload the HTML file your browser exports. Each bookmark becomes a "
        "note and each folder becomes a tag."
    )

    uploaded = st.file_uploader("Bookmark file", type=["html", "htm"])
    if uploaded is None:
        return

    if not st.button("Import", type="primary"):
        return

    html = uploaded.getvalue().decode("utf-8", errors="replace")
    with st.spinner("Importing bookmarks..."):
        try:
            report = api.import_bookmarks(token, html)
        except api.ApiError as e:
            st.error(str(e))
            return

    col1, col2, col3 = st.columns(3)
    col1.metric("Notes created", report.get("notes_created", 0))
    col2.metric("Tags created", report.get("tags_created", 0))
    col3.metric("Skipped", report.get("skipped", 0))

    for error in report.get("errors", []):
        st.warning(error)
    with st.expander("Import log"):
        st.code("\n".join(report.get("log", [])) or "(empty)")
