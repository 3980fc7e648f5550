import pytest

from graft.exception import InvalidRange
from graft.exception import RefNotFound
from graft.exception import UnsupportedMergeCommit
from graft.transplant.range import resolve_range


@pytest.fixture
def history(source):
    """Provides five linear commits on the source repository."""
    return [
        source.commit(f"commit {index}", {"file.txt": f"{index}\n"})
        for index in range(1, 6)
    ]


class TestResolveRange:
    """Tests for resolve_range.

    Fully qualified name: graft.transplant.range.resolve_range
    """

    def test_resolve_range(self, source_repository, history):
        """Test resolving a bounded range.

        Given:
            Five linear commits
        When:
            Resolving from the second to the fourth
        Then:
            It should return the third and fourth, oldest first
        """
        # Act
        commits = resolve_range(source_repository, history[1], history[3])

        # Assert
        assert commits == history[2:4]

    def test_resolve_range_from_root(self, source_repository, history):
        """Test resolving without a lower bound.

        Given:
            Five linear commits
        When:
            Resolving up to the branch name with no lower bound
        Then:
            It should return every commit including the root
        """
        # Act
        commits = resolve_range(source_repository, None, "main")

        # Assert
        assert commits == history

    def test_resolve_range_with_equal_bounds(self, source_repository, history):
        """Test resolving a range whose bounds name the same commit.

        Given:
            Five linear commits
        When:
            Resolving from the third to the third
        Then:
            It should return an empty list
        """
        # Act & Assert
        assert resolve_range(source_repository, history[2], history[2]) == []

    def test_resolve_range_with_reversed_bounds(self, source_repository, history):
        """Test resolving a range whose lower bound is newer.

        Given:
            Five linear commits
        When:
            Resolving from the fourth to the second
        Then:
            It should raise InvalidRange
        """
        # Act & Assert
        with pytest.raises(InvalidRange):
            resolve_range(source_repository, history[3], history[1])

    def test_resolve_range_with_unknown_ref(self, source_repository, history):
        """Test resolving a range with a bound that names nothing.

        Given:
            Five linear commits
        When:
            Resolving from an unknown tag
        Then:
            It should raise RefNotFound naming the tag
        """
        # Act
        with pytest.raises(RefNotFound) as excinfo:
            resolve_range(source_repository, "v9.9.9", "main")

        # Assert
        assert excinfo.value.ref == "v9.9.9"

    def test_resolve_range_with_merge_commit(self, source, source_repository):
        """Test resolving a range containing a merge.

        Given:
            A history where a side branch is merged back into main
        When:
            Resolving the whole range
        Then:
            It should raise UnsupportedMergeCommit naming the merge
        """
        # Arrange
        base = source.commit("base", {"a.txt": "a\n"})
        source.repo.create_head("side", base)
        main_tip = source.commit("main work", {"b.txt": "b\n"})
        source.repo.heads.side.checkout()
        side_tip = source.commit("side work", {"c.txt": "c\n"})
        source.repo.heads.main.checkout()
        source.write("c.txt", "c\n")
        source.repo.index.add(["c.txt"])
        merge = source.repo.index.commit(
            "merge side",
            parent_commits=[source.repo.commit(main_tip), source.repo.commit(side_tip)],
        ).hexsha

        # Act
        with pytest.raises(UnsupportedMergeCommit) as excinfo:
            resolve_range(source_repository, base, "main")

        # Assert
        assert excinfo.value.commit == merge

    def test_resolve_range_with_unrelated_lower_bound(
        self, source, source_repository, history
    ):
        """Test resolving from a commit on a disconnected history.

        Given:
            A second root commit on an orphan branch
        When:
            Resolving from that root up to main
        Then:
            It should raise InvalidRange
        """
        # Arrange
        source.repo.git.checkout("--orphan", "orphan")
        orphan = source.commit("orphan root", {"o.txt": "o\n"})
        source.repo.git.checkout("main")

        # Act & Assert
        with pytest.raises(InvalidRange):
            resolve_range(source_repository, orphan, "main")
