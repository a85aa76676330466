"""Import of browser-exported bookmark files (Netscape bookmark HTML).

Each bookmark becomes a note whose content is the URL; each folder name
becomes a tag with a random pastel color, attached to the folder's notes.
"""

from __future__ import annotations

import logging
from typing import Callable

from bs4 import BeautifulSoup, Tag as Element

from duo.colors import generate_pastel_color
from duo.errors import AuthenticationError, BookmarkImportError, DuoError
from duo.metrics import BOOKMARKS_IMPORTED
from duo.models import Bookmark, ImportReport
from duo.notes import NoteStore
from duo.tags import TagStore

logger = logging.getLogger(__name__)

UNTITLED = "Untitled Bookmark"


def _next_element(node: Element) -> Element | None:
    """The next sibling that is an element, skipping text between tags."""
    for sibling in node.next_siblings:
        if isinstance(sibling, Element):
            return sibling
    return None


def parse_bookmarks(html: str) -> list[Bookmark]:
    """Return the bookmarks of an export, in document order, with their folder.

    Browsers leave ``<DT>`` and ``<p>`` unclosed, so parsers nest the
    entries of a long folder ever deeper; the walk is iterative for that
    reason.  A folder is an ``<H3>`` immediately followed by a ``<DL>``.
    """
    soup = BeautifulSoup(html, "html.parser")
    root = soup.find("dl")
    if root is None:
        raise BookmarkImportError("No bookmarks list found in the file.")

    bookmarks: list[Bookmark] = []
    claimed: set[int] = set()
    stack: list[tuple[Element, str | None]] = [
        (child, None) for child in reversed(list(root.children))
    ]
    while stack:
        node, folder = stack.pop()
        if not isinstance(node, Element):
            continue
        if node.name == "a":
            bookmarks.append(
                Bookmark(
                    title=node.get_text(strip=True) or UNTITLED,
                    url=node.get("href") or None,
                    folder=folder,
                )
            )
            continue
        if node.name == "h3":
            contents = _next_element(node)
            if contents is not None and contents.name == "dl":
                claimed.add(id(contents))
                name = node.get_text(strip=True) or None
                stack.extend((c, name) for c in reversed(list(contents.children)))
            continue
        if node.name == "dl" and id(node) in claimed:
            continue
        stack.extend((c, folder) for c in reversed(list(node.children)))
    return bookmarks


async def import_bookmarks(
    html: str,
    notes: NoteStore,
    tags: TagStore,
    color_factory: Callable[[], str] = generate_pastel_color,
) -> ImportReport:
    """Create one tag per folder and one note per bookmark with a URL."""
    notes.session.require_user("import bookmarks")
    report = ImportReport()

    report.log.append("Parsing HTML file...")
    bookmarks = parse_bookmarks(html)
    report.log.append(f"Found {len(bookmarks)} bookmarks")
    if not bookmarks:
        raise BookmarkImportError(
            "No bookmarks found in the file. "
            "Make sure you exported your bookmarks as HTML."
        )

    folders = list(dict.fromkeys(b.folder for b in bookmarks if b.folder))
    report.log.append(f"Creating {len(folders)} folder tags...")
    folder_tags: dict[str, str] = {}
    for folder in folders:
        try:
            tag = await tags.create_tag(folder, color_factory())
        except AuthenticationError:
            raise
        except DuoError as e:
            logger.warning("Error creating tag %s: %s", folder, e)
            report.errors.append(f"Error creating tag {folder}: {e}")
            continue
        folder_tags[folder] = tag.id
        report.tags_created += 1
        report.log.append(f"Created tag: {folder}")

    for bookmark in bookmarks:
        if not bookmark.url:
            report.skipped += 1
            BOOKMARKS_IMPORTED.labels(result="skipped").inc()
            report.log.append("Skipping bookmark without URL")
            continue
        try:
            note = await notes.create_note(bookmark.title, bookmark.url)
            tag_id = folder_tags.get(bookmark.folder) if bookmark.folder else None
            if tag_id:
                await tags.add_tag_to_note(note.id, tag_id)
                report.log.append(
                    f'Assigned tag "{bookmark.folder}" to note "{bookmark.title}"'
                )
        except AuthenticationError:
            raise
        except DuoError as e:
            logger.warning("Error importing bookmark %s: %s", bookmark.title, e)
            BOOKMARKS_IMPORTED.labels(result="failed").inc()
            report.errors.append(f"Error with bookmark {bookmark.title}: {e}")
            continue
        report.notes_created += 1
        BOOKMARKS_IMPORTED.labels(result="created").inc()

    if report.notes_created == 0:
        raise BookmarkImportError(
            "Failed to import any bookmarks. Check the debug log for details."
        )
    logger.info(
        "Imported %d bookmarks into %d tags", report.notes_created, report.tags_created
    )
    return report
