import logging

from surflog.local import LocalStorage
from surflog.schemas import Profile
from tests.utils import make_entry


def test_missing_blobs_read_as_defaults(local_storage):
    assert local_storage.entries.read() == []
    assert local_storage.profile.read() == Profile(display_name="", avatar_index=0)


def test_entries_round_trip(local_storage):
    entries = [make_entry("b", 2, rating=5), make_entry("a", 1, equipment_type="Fish")]

    assert local_storage.entries.write(entries) is True

    assert LocalStorage(local_storage.directory).entries.read() == entries


def test_profile_round_trip(local_storage):
    local_storage.profile.write(Profile(display_name="Kai", avatar_index=3))

    assert local_storage.profile.read().avatar_index == 3


def test_corrupt_blob_is_discarded(local_storage, caplog):
    path = local_storage.entries.path
    path.parent.mkdir(parents=True)
    path.write_text("[{not json", encoding="utf-8")

    with caplog.at_level(logging.WARNING, logger="surflog.local"):
        assert local_storage.entries.read() == []

    assert not path.exists()
    assert "Corrupted local data" in caplog.text


def test_invalid_records_count_as_corrupt(local_storage):
    path = local_storage.profile.path
    path.parent.mkdir(parents=True)
    path.write_text('{"display_name": "Kai", "avatar_index": -4}', encoding="utf-8")

    assert local_storage.profile.read() == Profile()
    assert not path.exists()


def test_write_failure_is_reported_not_raised(tmp_path, caplog):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("", encoding="utf-8")
    storage = LocalStorage(blocker)

    with caplog.at_level(logging.ERROR, logger="surflog.local"):
        assert storage.entries.write([make_entry("a", 1)]) is False

    assert "Failed to write local data" in caplog.text


def test_default_is_not_shared_between_reads(local_storage):
    first = local_storage.entries.read()
    first.append(make_entry("a", 1))

    assert local_storage.entries.read() == []
