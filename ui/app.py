"""Duo — Streamlit notes interface.

Run with:
    streamlit run ui/app.py
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so `ui.*` imports resolve
# regardless of the working directory Streamlit uses.
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import streamlit as st  # noqa: E402

st.set_page_config(
    page_title="Duo",
    page_icon="🗒️",
    layout="wide",
    initial_sidebar_state="expanded",
)

from ui.components import banner, import_bookmarks, login, notes, sidebar, tags  # noqa: E402

if not st.session_state.get("token"):
    login.render()
    st.stop()

# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------

page = st.navigation(
    [
        st.Page(notes.render, title="Notes", icon="🗒️", default=True, url_path="notes"),
        st.Page(tags.render, title="Tags", icon="🏷️", url_path="tags"),
        st.Page(
            import_bookmarks.render, title="Import", icon="📥", url_path="import"
        ),
    ]
)

banner.render()

# Sidebar is shared across all pages
sidebar.render()

# Render the selected page
page.run()
