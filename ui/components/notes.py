"""Notes page: note cards, inline editing, tagging and bulk actions."""

from __future__ import annotations

from typing import Any

import requests
import streamlit as st

from ui import api

_TITLES: dict[str, str] = {
    "all": "📄 All Notes",
    "favorites": "⭐ Favorites",
    "trash": "🗑️ Trash",
}

# (button label, bulk action) per view
_BULK_ACTIONS: dict[bool, list[tuple[str, str]]] = {
    False: [
        ("⭐ Favorite", "favorite"),
        ("☆ Unfavorite", "unfavorite"),
        ("🗑️ Move to Trash", "trash"),
    ],
    True: [
        ("↩️ Restore", "restore"),
        ("❌ Delete Forever", "delete"),
    ],
}


def _run(fn: Any, *args: Any) -> Any:
    """Call an API function, surfacing its error in the page."""
    try:
        return fn(*args)
    except api.ApiError as e:
        st.error(str(e))
    except requests.RequestException as e:
        st.error(f"Request failed: {e}")
    return None


def render() -> None:
    """Render the notes page."""
    token = st.session_state.token
    view = st.session_state.get("view", "all")
    tag_id = st.session_state.get("tag_id")
    query = st.session_state.get("query", "")

    tags = _run(api.list_tags, token) or []
    tags_by_id = {t["id"]: t for t in tags}

    if view == "tag" and tag_id in tags_by_id:
        st.title(f"🏷️ {tags_by_id[tag_id]['name']}")
    else:
        st.title(_TITLES.get(view, _TITLES["all"]))

    col_refresh, _ = st.columns([1, 5])
    if col_refresh.button("🔄 Refresh"):
        _run(api.refresh_notes, token)

    notes = _run(api.list_notes, token, view, tag_id, query)
    if notes is None:
        return
    if query:
        st.caption(f'{len(notes)} result(s) for "{query}"')

    if not notes:
        st.info("No notes found." if query else "No notes here yet.")
        return

    _render_bulk_bar(token, notes, tags, in_trash=view == "trash")
    st.divider()

    cols = st.columns(2)
    for i, note in enumerate(notes):
        with cols[i % 2]:
            _render_card(token, note, tags)


def _render_bulk_bar(
    token: str, notes: list[dict[str, Any]], tags: list[dict[str, Any]], in_trash: bool
) -> None:
    """Multi-select of notes with the actions valid for the current view."""
    options = {n["id"]: n["title"] for n in notes}
    selected = st.multiselect(
        "Select notes",
        options=list(options),
        format_func=lambda nid: options.get(nid, nid),
        key="bulk_selection",
    )
    if not selected:
        return

    actions = _BULK_ACTIONS[in_trash]
    cols = st.columns(len(actions) + (0 if in_trash else 1))
    for col, (label, action) in zip(cols, actions):
        if col.button(label, key=f"bulk_{action}", use_container_width=True):
            _apply_bulk(token, action, selected)

    if not in_trash and tags:
        with cols[-1]:
            names = {t["id"]: t["name"] for t in tags}
            tag_id = st.selectbox(
                "Tag", options=list(names), format_func=names.get,
                key="bulk_tag", label_visibility="collapsed",
            )
            if st.button("🏷️ Add Tag", key="bulk_tag_apply", use_container_width=True):
                _apply_bulk(token, "tag", selected, tag_id)


def _apply_bulk(
    token: str, action: str, note_ids: list[str], tag_id: str | None = None
) -> None:
    result = _run(api.bulk, token, action, note_ids, tag_id)
    if result is None:
        return
    failed = result.get("failed", [])
    if failed:
        st.warning(f"{len(failed)} of {len(note_ids)} notes could not be updated.")
    else:
        st.toast(f"Updated {len(result.get('succeeded', []))} notes")
    st.session_state.pop("bulk_selection", None)
    st.rerun()


def _render_card(token: str, note: dict[str, Any], tags: list[dict[str, Any]]) -> None:
    """One note: title, content, tags and per-note actions."""
    note_id = note["id"]
    with st.container(border=True):
        star = "⭐ " if note.get("is_favorite") else ""
        st.markdown(f"#### {star}{note['title']}")
        if note.get("content"):
            st.markdown(note["content"])

        note_tags = _run(api.note_tags, token, note_id) or []
        if note_tags:
            st.caption("  ".join(f"`{t['name']}`" for t in note_tags))
        if note.get("updated_at"):
            st.caption(f"Updated {note['updated_at'][:16].replace('T', ' ')}")

        if note.get("is_deleted"):
            col_restore, col_delete = st.columns(2)
            if col_restore.button("↩️ Restore", key=f"restore_{note_id}"):
                _run(api.note_action, token, note_id, "restore")
                st.rerun()
            if col_delete.button("❌ Delete Forever", key=f"delete_{note_id}"):
                _run(api.delete_note, token, note_id)
                st.rerun()
            return

        col_fav, col_trash = st.columns(2)
        fav_label = "☆ Unfavorite" if note.get("is_favorite") else "⭐ Favorite"
        if col_fav.button(fav_label, key=f"fav_{note_id}"):
            _run(api.note_action, token, note_id, "favorite")
            st.rerun()
        if col_trash.button("🗑️ Trash", key=f"trash_{note_id}"):
            _run(api.note_action, token, note_id, "trash")
            st.rerun()

        with st.expander("Edit"):
            _render_editor(token, note, note_tags, tags)


def _render_editor(
    token: str,
    note: dict[str, Any],
    note_tags: list[dict[str, Any]],
    tags: list[dict[str, Any]],
) -> None:
    note_id = note["id"]
    with st.form(f"edit_{note_id}"):
        title = st.text_input("Title", value=note["title"])
        content = st.text_area("Content", value=note.get("content") or "", height=150)
        if st.form_submit_button("Save"):
            if _run(api.update_note, token, note_id, title, content) is not None:
                st.rerun()

    current = {t["id"] for t in note_tags}
    names = {t["id"]: t["name"] for t in tags}
    chosen = st.multiselect(
        "Tags",
        options=list(names),
        default=[tid for tid in current if tid in names],
        format_func=names.get,
        key=f"tags_{note_id}",
    )
    if st.button("Update Tags", key=f"save_tags_{note_id}"):
        for tag_id in set(chosen) - current:
            _run(api.add_note_tag, token, note_id, tag_id)
        for tag_id in current - set(chosen):
            _run(api.remove_note_tag, token, note_id, tag_id)
        st.rerun()
