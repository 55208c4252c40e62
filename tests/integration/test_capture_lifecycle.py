"""Integration tests for version capture across save and destroy."""

import pytest
from sqlalchemy import inspect, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from recordversions import CaptureInsertError
from tests.models import Document, Memo, Story, Translation, versioning


def _add_story(session, **values) -> Story:
    story = Story(**values)
    session.add(story)
    session.commit()
    return story


def test_new_record_produces_no_versions(db_session):
    """Saving a never-persisted record records nothing."""
    story = _add_story(db_session, id=1, title="A")

    assert len(versioning.history(db_session, story)) == 0
    assert list(versioning.history(db_session, story)) == []


def test_update_records_previous_state(db_session):
    """One save records exactly one version holding the pre-edit values."""
    story = _add_story(db_session, id=1, title="A", body="first draft")
    original_updated_at = story.updated_at

    story.title = "B"
    db_session.commit()

    versions = versioning.history(db_session, story).all()
    assert len(versions) == 1
    assert versions[0].id == 1
    assert versions[0].title == "A"
    assert versions[0].body == "first draft"
    assert versions[0].updated_at == original_updated_at
    assert versions[0].destroyed is False


def test_successive_updates_are_returned_most_recent_first(db_session):
    """A -> B -> C leaves versions B then A."""
    story = _add_story(db_session, id=1, title="A")

    story.title = "B"
    db_session.commit()
    story.title = "C"
    db_session.commit()

    versions = versioning.history(db_session, story).all()
    assert [v.title for v in versions] == ["B", "A"]
    assert versions[0].sequence_id > versions[1].sequence_id
    assert db_session.get(Story, 1).title == "C"


def test_unchanged_attributes_are_snapshotted_in_full(db_session):
    """Versions are full rows, not sparse diffs."""
    story = _add_story(db_session, id=1, title="A", slug="a", body="text")

    story.title = "B"
    db_session.commit()

    version = versioning.history(db_session, story).latest()
    assert (version.title, version.slug, version.body) == ("A", "a", "text")


def test_save_without_net_change_records_nothing(db_session):
    story = _add_story(db_session, id=1, title="A")

    story.title = "A"
    db_session.commit()

    assert len(versioning.history(db_session, story)) == 0


def test_destroy_without_edits_records_one_version(db_session):
    story = _add_story(db_session, id=1, title="A")

    db_session.delete(story)
    db_session.commit()

    versions = versioning.history(db_session, story).all()
    assert len(versions) == 1
    assert versions[0].title == "A"
    assert versions[0].destroyed is False
    assert db_session.get(Story, 1) is None


def test_destroy_with_unsaved_edit_records_two_versions(db_session):
    """The last persisted image and the abandoned edit are both kept."""
    _add_story(db_session, id=2, title="X")
    db_session.expunge_all()

    story = db_session.get(Story, 2)
    story.title = "Y"
    db_session.delete(story)
    db_session.commit()

    versions = versioning.history(db_session, story).all()
    assert [(v.title, v.destroyed) for v in versions] == [("Y", True), ("X", False)]
    assert versions[0].sequence_id > versions[1].sequence_id
    assert versions[0].updated_at > versions[1].updated_at


def test_history_survives_deletion_and_update_history(db_session):
    story = _add_story(db_session, id=1, title="A")
    story.title = "B"
    db_session.commit()

    db_session.delete(story)
    db_session.commit()

    versions = versioning.history(db_session, story).all()
    assert [(v.title, v.destroyed) for v in versions] == [("B", False), ("A", False)]


def test_history_only_matches_the_instance_keys(db_session):
    first = _add_story(db_session, id=1, title="one")
    second = _add_story(db_session, id=2, title="two")

    first.title = "one, edited"
    second.title = "two, edited"
    db_session.commit()
    second.title = "two, edited again"
    db_session.commit()

    assert [v.title for v in versioning.history(db_session, first)] == ["one"]
    second_versions = versioning.history(db_session, second).all()
    assert [v.title for v in second_versions] == ["two, edited", "two"]
    assert all(v.id == 2 for v in second_versions)


def test_history_is_restartable_and_sees_new_versions(db_session):
    story = _add_story(db_session, id=1, title="A")
    versions = versioning.history(db_session, story)

    assert list(versions) == []

    story.title = "B"
    db_session.commit()

    assert [v.title for v in versions] == ["A"]
    assert [v.title for v in versions] == ["A"]
    assert len(versions) == 1
    assert versions[0].title == "A"


def test_composite_key_history(db_session):
    """Every key attribute takes part in the history query."""
    english = Translation(story_id=1, locale="en", text="Hello")
    french = Translation(story_id=1, locale="fr", text="Bonjour")
    db_session.add_all([english, french])
    db_session.commit()

    english.text = "Hi"
    english.revision = 2
    db_session.commit()

    versions = versioning.history(db_session, english).all()
    assert [(v.locale, v.text, v.revision) for v in versions] == [("en", "Hello", 1)]
    assert len(versioning.history(db_session, french)) == 0


def test_polymorphic_subclass_is_versioned_with_its_identity(db_session):
    memo = Memo(id=1, name="Quarterly", recipient="board")
    db_session.add(memo)
    db_session.commit()

    memo.name = "Quarterly report"
    db_session.commit()

    versions = versioning.history(db_session, memo).all()
    assert len(versions) == 1
    assert versions[0].kind == "memo"
    assert versions[0].name == "Quarterly"
    assert isinstance(versions[0], versioning.version_type(Document))


def test_versions_accessor_on_mixin(db_session):
    story = _add_story(db_session, id=1, title="A")
    story.title = "B"
    db_session.commit()

    assert [v.title for v in story.versions] == ["A"]


def test_expired_attributes_still_capture_old_values(session_factory):
    """Edits to attributes expired by commit still record the loaded value."""
    factory = sessionmaker(bind=session_factory.kw["bind"], expire_on_commit=True)
    versioning.listen(factory)

    with factory() as session:
        story = Story(id=1, title="A")
        session.add(story)
        session.commit()

        assert "title" not in inspect(story).dict
        story.title = "B"
        session.commit()

        versions = versioning.history(session, story).all()
        assert [v.title for v in versions] == ["A"]


def test_failed_save_clears_pending_capture(db_session):
    """A save that fails leaves no pending state and no version."""
    _add_story(db_session, id=1, title="A", slug="taken")
    story = _add_story(db_session, id=2, title="B", slug="free")

    story.slug = "taken"
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()

    assert not versioning.protocol.pending(story)
    assert len(versioning.history(db_session, story)) == 0
    assert db_session.get(Story, 2).slug == "free"


def test_version_insert_failure_aborts_save(engine, db_session):
    story = _add_story(db_session, id=1, title="A")
    db_session.close()
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE stories_versions"))

    story = db_session.get(Story, 1)
    story.title = "B"
    with pytest.raises(CaptureInsertError) as exc_info:
        db_session.commit()
    db_session.rollback()

    assert exc_info.value.entity == "Story"
    assert exc_info.value.destroyed is False
    assert exc_info.value.__cause__ is not None
    assert db_session.get(Story, 1).title == "A"

    with engine.begin() as conn:
        inspect(versioning.version_type(Story)).local_table.create(conn)


def test_version_insert_failure_aborts_destroy(engine, db_session):
    _add_story(db_session, id=1, title="A")
    db_session.close()
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE stories_versions"))

    story = db_session.get(Story, 1)
    db_session.delete(story)
    with pytest.raises(CaptureInsertError):
        db_session.commit()
    db_session.rollback()

    assert db_session.scalar(select(Story.title).where(Story.id == 1)) == "A"

    with engine.begin() as conn:
        inspect(versioning.version_type(Story)).local_table.create(conn)


def test_untracked_sessions_record_nothing(engine, db_session):
    """Only sessions the listeners are attached to capture versions."""
    untracked = sessionmaker(bind=engine, expire_on_commit=False)
    with untracked() as session:
        story = Story(id=1, title="A")
        session.add(story)
        session.commit()
        story.title = "B"
        session.commit()

    assert db_session.scalar(select(Story.title).where(Story.id == 1)) == "B"
    assert len(versioning.history(db_session, db_session.get(Story, 1))) == 0


def test_version_rows_are_not_mapped_to_the_entity_session_state(db_session):
    """Capturing versions does not add objects to the session."""
    story = _add_story(db_session, id=1, title="A")
    story.title = "B"
    db_session.commit()

    assert not db_session.new
    assert not db_session.dirty
    assert not db_session.deleted
