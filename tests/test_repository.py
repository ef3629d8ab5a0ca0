"""Tests for file-based repositories and the registry."""

import threading

import pytest

from rangesync.config import RepositoryConfig
from rangesync.exceptions import (
    NotMasterError,
    RepositoryNotFoundError,
    VersionConflictError,
    VersionSequenceError,
)
from rangesync.repository import Repository, RepositoryRegistry


@pytest.fixture
def master(tmp_path):
    return Repository(tmp_path / "master", "apache", "store", master=True)


@pytest.fixture
def replica(tmp_path):
    return Repository(tmp_path / "replica", "apache", "store", master=False)


class TestCommitSequencing:
    """Commits are strictly sequential on the master."""

    def test_sequencing_scenario(self, master):
        assert master.commit(1, b"X")
        with pytest.raises(VersionSequenceError):
            master.commit(1, b"Y")
        with pytest.raises(VersionSequenceError):
            master.commit(3, b"Z")
        assert master.commit(2, b"Z")

        assert master.checkout(1) == b"X"
        assert master.checkout(2) == b"Z"
        assert master.get_range().to_representation() == "1-2"

    def test_first_commit_must_be_one(self, master):
        with pytest.raises(VersionSequenceError) as exc_info:
            master.commit(2, b"X")
        assert exc_info.value.expected == 1

    def test_unchanged_content_not_stored(self, master):
        master.commit(1, b"same")
        assert not master.commit(2, b"same")
        assert master.highest_version == 1

    def test_invalid_version(self, master):
        with pytest.raises(ValueError):
            master.commit(0, b"X")

    def test_initial_content(self, tmp_path):
        repo = Repository(tmp_path / "r", "c", "n", master=True, initial_content=b"<empty/>")
        assert repo.checkout(1) == b"<empty/>"
        assert repo.commit(2, b"<full/>")

    def test_initial_content_not_rewritten(self, tmp_path):
        Repository(tmp_path / "r", "c", "n", master=True, initial_content=b"a").commit(2, b"b")
        repo = Repository(tmp_path / "r", "c", "n", master=True, initial_content=b"a")
        assert repo.get_range().to_representation() == "1-2"

    def test_initial_content_only_seeds_master(self, tmp_path):
        replica = Repository(tmp_path / "r", "c", "n", master=False, initial_content=b"<local/>")
        assert replica.get_range().to_representation() == ""
        assert replica.checkout(1) is None
        assert replica.put(1, b"<from master/>")
        assert replica.checkout(1) == b"<from master/>"

    def test_concurrent_commits_one_winner(self, master):
        outcomes = []

        def commit(payload):
            try:
                outcomes.append(master.commit(1, payload))
            except VersionSequenceError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=commit, args=(f"v{i}".encode(),)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(True) == 1
        assert outcomes.count("rejected") == 4


class TestNonMaster:
    """Non-master repositories reject commits but accept replication."""

    def test_rejects_commit(self, replica):
        for version in (1, 2, 5):
            with pytest.raises(NotMasterError):
                replica.commit(version, b"X")

    def test_accepts_put(self, replica):
        assert replica.put(1, b"X")
        assert replica.checkout(1) == b"X"


class TestPut:
    """Replication writes."""

    def test_put_out_of_order(self, replica):
        assert replica.put(3, b"c")
        assert replica.put(1, b"a")
        assert replica.get_range().to_representation() == "1,3"

    def test_identical_put_is_noop(self, replica):
        replica.put(1, b"a")
        assert not replica.put(1, b"a")

    def test_conflicting_put(self, replica):
        replica.put(1, b"a")
        with pytest.raises(VersionConflictError):
            replica.put(1, b"b")
        assert replica.checkout(1) == b"a"

    def test_put_invalid_version(self, replica):
        with pytest.raises(ValueError):
            replica.put(0, b"a")


class TestCheckout:
    """Reads."""

    def test_missing_version(self, master):
        assert master.checkout(7) is None
        assert master.get(7) is None

    def test_invalid_version(self, master):
        with pytest.raises(ValueError):
            master.checkout(0)

    def test_file_extension(self, tmp_path):
        repo = Repository(tmp_path / "r", "c", "n", master=True, file_extension=".xml")
        repo.commit(1, b"<a/>")
        assert (tmp_path / "r" / "1.xml").read_bytes() == b"<a/>"
        assert repo.get_range().to_representation() == "1"

    def test_ignores_foreign_files(self, tmp_path):
        repo = Repository(tmp_path / "r", "c", "n", master=True)
        (tmp_path / "r" / "README").write_text("not a version")
        assert repo.highest_version == 0
        assert repo.commit(1, b"a")


class TestLimit:
    """Retention limit."""

    def test_commit_purges_old_versions(self, tmp_path):
        repo = Repository(tmp_path / "r", "c", "n", master=True, limit=2)
        for version in range(1, 5):
            repo.commit(version, f"v{version}".encode())
        assert repo.get_range().to_representation() == "3-4"
        assert repo.checkout(1) is None

    def test_lowering_limit_purges(self, tmp_path):
        repo = Repository(tmp_path / "r", "c", "n", master=True)
        for version in range(1, 6):
            repo.commit(version, f"v{version}".encode())
        repo.update(master=False, limit=1)
        assert repo.get_range().to_representation() == "5"
        assert not repo.master

    def test_invalid_limit(self, tmp_path):
        with pytest.raises(ValueError):
            Repository(tmp_path / "r", "c", "n", limit=0)


class TestRegistry:
    """Tests for RepositoryRegistry."""

    def test_find_and_get(self, tmp_path):
        registry = RepositoryRegistry(
            [
                Repository(tmp_path / "a", "apache", "shop"),
                Repository(tmp_path / "b", "apache", "store"),
                Repository(tmp_path / "c", "other", "store"),
            ]
        )
        assert len(registry) == 3
        assert [r.key for r in registry.find(customer="apache")] == [
            ("apache", "shop"),
            ("apache", "store"),
        ]
        assert [r.customer for r in registry.find(name="store")] == ["apache", "other"]
        assert registry.get("other", "store").name == "store"

    def test_get_unknown(self):
        with pytest.raises(RepositoryNotFoundError):
            RepositoryRegistry().get("x", "y")

    def test_from_config(self, tmp_path):
        initial = tmp_path / "initial.xml"
        initial.write_bytes(b"<repo/>")
        registry = RepositoryRegistry.from_config(
            [
                RepositoryConfig(customer="apache", name="shop", master=True, initial_content_file=str(initial)),
                RepositoryConfig(customer="apache", name="store", limit=3),
            ],
            tmp_path / "data",
        )
        shop = registry.get("apache", "shop")
        assert shop.master
        assert shop.checkout(1) == b"<repo/>"
        assert shop.directory == tmp_path / "data" / "repositories" / "apache" / "shop"
        assert registry.get("apache", "store").limit == 3
