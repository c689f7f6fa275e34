from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from notebook_engine.affinity import RunLoopAffinity
from notebook_engine.changes import ChangeSet
from notebook_engine.clock import StepClock
from notebook_engine.context import ObjectContext
from notebook_engine.errors import AffinityError, CommitError, UnknownEntityError
from notebook_engine.gateway import PersistenceGateway
from notebook_engine.models import EntityKind, Note, Notebook, ObjectId
from notebook_engine.payload import RichText
from notebook_engine.query import QueryDescriptor


def test_created_entities_are_persisted_and_stamped(gateway: PersistenceGateway, clock: StepClock) -> None:
    ctx = gateway.read_context()
    notebook = ctx.create_notebook("Groceries")
    note = ctx.create_note(notebook)

    changes = ctx.save()

    assert changes.inserted == {notebook.object_id, note.object_id}
    assert notebook.creation_date == clock.start
    assert note.creation_date is not None and note.creation_date > notebook.creation_date
    assert note.body == RichText.plain("New Note")
    assert ctx.execute(QueryDescriptor.notes_in(notebook.object_id)) == [note]
    assert ctx.owner_of(note) is notebook


def test_save_without_changes_is_empty(gateway: PersistenceGateway) -> None:
    assert gateway.read_context().save() == ChangeSet()


def test_attribute_edits_are_detected_and_committed(gateway: PersistenceGateway) -> None:
    ctx = gateway.read_context()
    notebook = ctx.create_notebook("Groceries")
    note = ctx.create_note(notebook, "milk")
    ctx.save()

    assert not ctx.has_changes
    note.body = RichText.plain("eggs")
    assert ctx.has_changes

    changes = ctx.save()

    assert changes.updated == {note.object_id}
    assert not ctx.has_changes


def test_rollback_restores_committed_values(gateway: PersistenceGateway) -> None:
    ctx = gateway.read_context()
    notebook = ctx.create_notebook("Groceries")
    ctx.save()

    notebook.name = "Chores"
    extra = ctx.create_note(notebook)
    ctx.rollback()

    assert notebook.name == "Groceries"
    assert not ctx.has_changes
    with pytest.raises(UnknownEntityError):
        ctx.object_with_id(extra.object_id)


def test_deleting_a_notebook_reports_cascaded_notes(gateway: PersistenceGateway) -> None:
    ctx = gateway.read_context()
    notebook = ctx.create_notebook("Groceries")
    notes = [ctx.create_note(notebook, text) for text in ("a", "b")]
    ctx.save()

    ctx.delete(notebook)
    changes = ctx.save()

    assert changes.deleted == {notebook.object_id, *(n.object_id for n in notes)}
    assert ctx.execute(QueryDescriptor.all_notes()) == []


def test_deleting_an_unsaved_entity_just_drops_it(gateway: PersistenceGateway) -> None:
    ctx = gateway.read_context()
    notebook = ctx.create_notebook("Scratch")
    ctx.delete(notebook)
    assert not ctx.has_changes


def test_identity_map_returns_one_object_per_id(gateway: PersistenceGateway) -> None:
    ctx = gateway.read_context()
    notebook = ctx.create_notebook("Groceries")
    ctx.save()

    assert ctx.object_with_id(notebook.object_id) is notebook
    assert ctx.execute(QueryDescriptor.all_notebooks())[0] is notebook


def test_commit_failure_keeps_pending_changes(gateway: PersistenceGateway) -> None:
    ctx = gateway.read_context()
    notebook = ctx.create_notebook("Groceries")
    ctx.save()
    note = ctx.create_note(notebook, "milk")

    blocker = sqlite3.connect(gateway.store.db_path, timeout=0)
    blocker.execute("BEGIN EXCLUSIVE")
    try:
        with pytest.raises(CommitError):
            ctx.save()
        assert ctx.has_changes
    finally:
        blocker.rollback()
        blocker.close()

    assert ctx.save().inserted == {note.object_id}


def test_commits_reach_the_other_context_on_its_affinity(
    gateway: PersistenceGateway, loop: RunLoopAffinity
) -> None:
    read = gateway.read_context()
    write = gateway.write_context()
    notebook = read.create_notebook("Groceries")
    note = read.create_note(notebook, "milk")
    read.save()

    seen: list[ChangeSet] = []
    read.observe("test", seen.append)

    def edit_in_writer() -> ChangeSet:
        target = write.object_with_id(note.object_id)
        assert isinstance(target, Note)
        target.body = RichText.plain("oat milk")
        return write.save()

    loop.run_until(write.perform(edit_in_writer))

    assert [c.updated for c in seen] == [frozenset({note.object_id})]
    assert note.body == RichText.plain("oat milk")


def test_merge_keeps_local_unsaved_edits(gateway: PersistenceGateway, loop: RunLoopAffinity) -> None:
    read = gateway.read_context()
    write = gateway.write_context()
    notebook = read.create_notebook("Groceries")
    read.save()

    def rename_in_writer() -> None:
        target = write.object_with_id(notebook.object_id)
        assert isinstance(target, Notebook)
        target.name = "Shopping"
        write.save()

    notebook.name = "Local"
    loop.run_until(write.perform(rename_in_writer))

    assert notebook.name == "Local"
    assert read.has_changes


def test_context_rejects_calls_off_its_affinity(gateway: PersistenceGateway) -> None:
    with pytest.raises(AffinityError):
        gateway.write_context().create_notebook("Wrong thread")


def test_contexts_must_use_a_notebook_as_parent(gateway: PersistenceGateway) -> None:
    ctx = gateway.read_context()
    notebook = ctx.create_notebook("Groceries")
    note = ctx.create_note(notebook)
    with pytest.raises(UnknownEntityError):
        ctx.create_note(note.object_id)


def test_closed_context_stops_receiving_merges(tmp_path: Path, clock: StepClock) -> None:
    loop = RunLoopAffinity()
    gateway = PersistenceGateway(data_root=tmp_path, main_affinity=loop, clock=clock)
    loop.run_until(gateway.open("closing"))
    read: ObjectContext = gateway.read_context()

    gateway.close()

    assert read not in gateway.store._contexts


def test_note_needs_an_existing_notebook(gateway: PersistenceGateway) -> None:
    ctx = gateway.read_context()
    with pytest.raises(UnknownEntityError):
        ctx.create_note(ObjectId.new(EntityKind.NOTEBOOK), "orphan")
    assert not ctx.has_changes


def test_note_cannot_join_a_notebook_pending_deletion(gateway: PersistenceGateway) -> None:
    ctx = gateway.read_context()
    notebook = ctx.create_notebook("Groceries")
    ctx.save()

    ctx.delete(notebook)
    with pytest.raises(UnknownEntityError):
        ctx.create_note(notebook, "too late")

    assert ctx.save().deleted == {notebook.object_id}


def test_note_can_join_an_unsaved_notebook(gateway: PersistenceGateway) -> None:
    ctx = gateway.read_context()
    notebook = ctx.create_notebook("Groceries")
    note = ctx.create_note(notebook, "milk")
    assert ctx.save().inserted == {notebook.object_id, note.object_id}


def test_discard_drops_only_the_given_insert(gateway: PersistenceGateway) -> None:
    ctx = gateway.read_context()
    notebook = ctx.create_notebook("Groceries")
    ctx.save()
    kept = ctx.create_note(notebook, "kept")
    dropped = ctx.create_note(notebook, "dropped")

    ctx.discard(dropped)

    assert ctx.save().inserted == {kept.object_id}
    with pytest.raises(UnknownEntityError):
        ctx.object_with_id(dropped.object_id)
