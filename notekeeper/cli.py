"""
Command-line interface for notekeeper.

Notes
-----
The CLI is intentionally thin. It opens the store through the persistence
gateway and drives the same ObservedListAdapter a GUI would, with a recording
view standing in for a list widget.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from notebook_engine.adapter import CommitFailure, ObservedListAdapter
from notebook_engine.affinity import RunLoopAffinity
from notebook_engine.changes import IndexPath
from notebook_engine.errors import NotebookEngineError, UnknownEntityError
from notebook_engine.fatal import reraise
from notebook_engine.gateway import PersistenceGateway
from notebook_engine.models import Note, Notebook
from notebook_engine.payload import RichText
from notebook_engine.query import QueryDescriptor
from notebook_engine.settings import LOG_LEVELS, EngineSettings, load_settings
from notebook_engine.views import RecordingView

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    """
    Build and return the top-level argument parser.

    Returns
    -------
    argparse.ArgumentParser
        Configured parser.
    """
    parser = argparse.ArgumentParser(
        prog="notekeeper",
        description="Notebooks and notes kept in a local store",
    )
    parser.add_argument(
        "--data-root",
        default=None,
        help="Override the data root. If omitted, settings or platform defaults are used.",
    )
    parser.add_argument("--store", default=None, help="Store name (default: from settings)")
    parser.add_argument("--log-level", default=None, choices=LOG_LEVELS, help="Log level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("notebooks", help="List notebooks, newest first")

    p = sub.add_parser("add-notebook", help="Create a notebook")
    p.add_argument("name", help="Notebook name")

    p = sub.add_parser("delete-notebook", help="Delete a notebook and all of its notes")
    p.add_argument("name", help="Notebook name")

    p = sub.add_parser("notes", help="List the notes of a notebook, newest first")
    p.add_argument("notebook", help="Notebook name")

    p = sub.add_parser("add-note", help="Add a note to a notebook")
    p.add_argument("notebook", help="Notebook name")
    p.add_argument("--text", default=None, help="Note text (default: 'New Note')")

    p = sub.add_parser("edit-note", help="Replace the text of a note")
    p.add_argument("notebook", help="Notebook name")
    p.add_argument("row", type=int, help="Row number as shown by 'notes'")
    p.add_argument("--text", required=True, help="New note text")

    p = sub.add_parser("delete-note", help="Delete a note")
    p.add_argument("notebook", help="Notebook name")
    p.add_argument("row", type=int, help="Row number as shown by 'notes'")

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Run the CLI.

    Returns
    -------
    int
        0 on success, 1 if a commit failed, 2 on a usage or domain error.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    data_root = Path(args.data_root) if args.data_root else None
    settings = load_settings(data_root=data_root)
    if data_root is None:
        data_root = settings.data_root

    logging.basicConfig(level=args.log_level or settings.log_level, format=LOG_FORMAT)

    loop = RunLoopAffinity("cli")
    gateway = PersistenceGateway(data_root=data_root, main_affinity=loop, fatal_handler=reraise)
    try:
        loop.run_until(gateway.open(args.store or settings.store_name))
        return _Session(gateway, loop, settings).run(args)
    except (NotebookEngineError, IndexError, ValueError) as exc:
        print(f"ERROR: {exc}")
        return 2
    finally:
        gateway.close()


class _Session:
    """One CLI command against an open gateway."""

    def __init__(self, gateway: PersistenceGateway, loop: RunLoopAffinity, settings: EngineSettings) -> None:
        self._gateway = gateway
        self._loop = loop
        self._settings = settings
        self._failures: list[CommitFailure] = []

    def run(self, args: argparse.Namespace) -> int:
        notebooks = self._adapter(QueryDescriptor.all_notebooks(), _render_notebook)
        try:
            if args.command == "notebooks":
                _print_rows(notebooks)
            elif args.command == "add-notebook":
                notebooks.add_notebook(args.name)
            elif args.command == "delete-notebook":
                self._wait(notebooks.delete(self._locate(notebooks, args.name)))
            else:
                self._run_note_command(args, notebooks)
        finally:
            notebooks.release()

        for failure in self._failures:
            print(f"ERROR: {failure.operation} failed: {failure.error}")
        return 1 if self._failures else 0

    def _run_note_command(self, args: argparse.Namespace, notebooks: ObservedListAdapter) -> None:
        notebook = notebooks.row(self._locate(notebooks, args.notebook))
        assert isinstance(notebook, Notebook)
        notes = self._adapter(QueryDescriptor.notes_in(notebook), _render_note)
        try:
            if args.command == "notes":
                _print_rows(notes)
            elif args.command == "add-note":
                notes.add_note(notebook, args.text)
            elif args.command == "edit-note":
                note = notes.row(IndexPath(0, args.row))
                text = args.text
                self._wait(notes.update_async(note, lambda: RichText.plain(text)))
            elif args.command == "delete-note":
                self._wait(notes.delete(IndexPath(0, args.row)))
        finally:
            notes.release()

    def _adapter(self, query: QueryDescriptor, render) -> ObservedListAdapter:
        return ObservedListAdapter(
            self._gateway,
            query,
            view=RecordingView(),
            render=render,
            options=self._settings.adapter_options(),
            on_commit_error=self._failures.append,
        )

    def _wait(self, future) -> None:
        self._loop.run_until(future)

    @staticmethod
    def _locate(notebooks: ObservedListAdapter, name: str) -> IndexPath:
        for row, notebook in enumerate(notebooks.rows(0)):
            if isinstance(notebook, Notebook) and notebook.name == name:
                return IndexPath(0, row)
        raise UnknownEntityError(f"No notebook named {name!r}")


def _render_notebook(lines: list[str], notebook: Notebook) -> None:
    lines.append(notebook.name)
    lines.append(f"(created {notebook.creation_date.isoformat(timespec='seconds')})")


def _render_note(lines: list[str], note: Note) -> None:
    lines.append(note.preview)


def _print_rows(adapter: ObservedListAdapter) -> None:
    for row in range(adapter.row_count(0)):
        lines: list[str] = adapter.render_row([], IndexPath(0, row))
        print(f"{row:>3}  {'  '.join(lines)}")
