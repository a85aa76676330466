"""Tags page: create, rename, recolor and delete tags."""

from __future__ import annotations

import re

import streamlit as st

from duo.colors import PALETTE
from ui import api

_HEX = re.compile(r"^#[0-9A-Fa-f]{6}$")


def _as_hex(color: str) -> str:
    """color_picker only accepts #rrggbb; imported tags may be hsl()."""
    return color if _HEX.match(color or "") else PALETTE[0]


def render() -> None:
    """Render the tag manager."""
    token = st.session_state.token
    st.title("🏷️ Tags")

    with st.form("new_tag", clear_on_submit=True):
        st.subheader("Create Tag")
        name = st.text_input("Tag Name")
        color = st.radio(
            "Color",
            options=PALETTE,
            horizontal=True,
            format_func=lambda c: f"■ {c}",
        )
        if st.form_submit_button("Create Tag"):
            try:
                api.create_tag(token, name, color)
            except api.ApiError as e:
                st.error(str(e))
            else:
                st.toast(f"Tag '{name.strip()}' created")
                st.rerun()

    st.divider()

    try:
        tags = api.list_tags(token)
    except api.ApiError as e:
        st.error(str(e))
        return
    if not tags:
        st.info("No tags yet. Create one above or import bookmarks.")
        return

    for tag in tags:
        _render_tag(token, tag)

    with st.expander("Cache statistics"):
        try:
            st.json(api.tag_cache_stats(token))
        except api.ApiError as e:
            st.error(str(e))


def _render_tag(token: str, tag: dict) -> None:
    tag_id = tag["id"]
    with st.container(border=True):
        st.markdown(
            f'<span style="color:{tag["color"]}">●</span> **{tag["name"]}**',
            unsafe_allow_html=True,
        )
        with st.form(f"tag_{tag_id}"):
            col_name, col_color = st.columns([3, 1])
            name = col_name.text_input("Name", value=tag["name"])
            color = col_color.color_picker("Color", value=_as_hex(tag["color"]))
            col_save, col_delete = st.columns(2)
            save = col_save.form_submit_button("Save")
            delete = col_delete.form_submit_button("Delete")

    try:
        if save:
            api.update_tag(token, tag_id, name, color)
            st.rerun()
        if delete:
            api.delete_tag(token, tag_id)
            if st.session_state.get("tag_id") == tag_id:
                st.session_state.view = "all"
                st.session_state.tag_id = None
            st.rerun()
    except api.ApiError as e:
        st.error(str(e))
