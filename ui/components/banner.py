"""Dismissible announcement banner with an inline editor."""

from __future__ import annotations

import html

import streamlit as st

_DEFAULTS = {
    "banner_text": "Welcome to Duo! Import your browser bookmarks from the Import page.",
    "banner_bg": "#4F46E5",
    "banner_fg": "#FFFFFF",
    "banner_visible": True,
}


def _ensure_state() -> None:
    for key, value in _DEFAULTS.items():
        st.session_state.setdefault(key, value)


def render() -> None:
    """Show the banner unless dismissed; editing happens in an expander."""
    _ensure_state()
    if not st.session_state.banner_visible:
        return

    col_text, col_edit, col_close = st.columns([12, 1, 1])
    with col_text:
        st.markdown(
            f'<div style="background-color:{html.escape(st.session_state.banner_bg)};'
            f"color:{html.escape(st.session_state.banner_fg)};"
            f'padding:0.6rem 1rem;border-radius:0.5rem;text-align:center">'
            f"{html.escape(st.session_state.banner_text)}</div>",
            unsafe_allow_html=True,
        )
    with col_edit:
        if st.button("✏️", key="banner_edit", help="Edit banner"):
            st.session_state.banner_editing = not st.session_state.get("banner_editing")
    with col_close:
        if st.button("✖", key="banner_close", help="Dismiss"):
            st.session_state.banner_visible = False
            st.rerun()

    if st.session_state.get("banner_editing"):
        _render_editor()


def _render_editor() -> None:
    with st.form("banner_form"):
        text = st.text_area("Banner Text", value=st.session_state.banner_text, height=80)
        col_bg, col_fg = st.columns(2)
        bg = col_bg.color_picker("Background Color", value=st.session_state.banner_bg)
        fg = col_fg.color_picker("Text Color", value=st.session_state.banner_fg)
        if st.form_submit_button("Save Changes"):
            st.session_state.banner_text = text
            st.session_state.banner_bg = bg
            st.session_state.banner_fg = fg
            st.session_state.banner_editing = False
            st.rerun()
