"""Sidebar: search, view navigation, tag list, new note and sign-out."""

from __future__ import annotations

import streamlit as st

from ui import api

_VIEWS: list[tuple[str, str]] = [
    ("all", "📄 All Notes"),
    ("favorites", "⭐ Favorites"),
    ("trash", "🗑️ Trash"),
]


def _ensure_state() -> None:
    st.session_state.setdefault("view", "all")
    st.session_state.setdefault("tag_id", None)
    st.session_state.setdefault("query", "")


def _select_view(view: str) -> None:
    st.session_state.view = view
    st.session_state.tag_id = None


def _select_tag(tag_id: str) -> None:
    st.session_state.view = "tag"
    st.session_state.tag_id = tag_id


def _clear_search() -> None:
    st.session_state.query = ""


def render() -> None:
    """Render the shared sidebar."""
    _ensure_state()
    token = st.session_state.token

    with st.sidebar:
        user = st.session_state.get("user") or {}
        st.markdown(f"**{user.get('email') or 'Signed in'}**")

        col_search, col_clear = st.columns([5, 1])
        col_search.text_input(
            "Search notes", key="query", placeholder="Search notes...",
            label_visibility="collapsed",
        )
        col_clear.button("✖", on_click=_clear_search, help="Clear search")

        st.divider()
        for view, label in _VIEWS:
            active = st.session_state.view == view
            st.button(
                label,
                key=f"view_{view}",
                on_click=_select_view,
                args=(view,),
                type="primary" if active else "secondary",
                use_container_width=True,
            )

        st.divider()
        st.subheader("Tags")
        try:
            tags = api.list_tags(token)
        except Exception as e:
            st.error(f"Could not load tags: {e}")
            tags = []
        if not tags:
            st.caption("No tags yet.")
        for tag in tags:
            active = st.session_state.tag_id == tag["id"]
            st.button(
                f"● {tag['name']}",
                key=f"tag_{tag['id']}",
                on_click=_select_tag,
                args=(tag["id"],),
                type="primary" if active else "secondary",
                use_container_width=True,
            )

        st.divider()
        with st.expander("➕ New Note"):
            _render_new_note(token)

        st.divider()
        if st.button("Sign out", use_container_width=True):
            try:
                api.logout(token)
            except Exception:
                pass  # local sign-out proceeds regardless
            for key in ("token", "user", "view", "tag_id", "query"):
                st.session_state.pop(key, None)
            st.rerun()


def _render_new_note(token: str) -> None:
    with st.form("new_note", clear_on_submit=True):
        title = st.text_input("Title")
        content = st.text_area("Content", height=120)
        if st.form_submit_button("Create Note"):
            try:
                api.create_note(token, title, content)
            except api.ApiError as e:
                st.error(str(e))
                return
            st.toast("Note created")
            st.rerun()
