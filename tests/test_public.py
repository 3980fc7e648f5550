import graft


def test_public():
    # Get all symbols from the graft module
    for symbol in graft.__all__:
        assert hasattr(graft, symbol), f"Symbol '{symbol}' not found in graft module"

    assert set(graft.__all__) == {
        "TransplantConfig",
        "Transplanter",
        "TransplantExecutor",
        "ProgressStore",
        "TransplantState",
        "resolve_range",
        "extract_changeset",
        "ChangeSet",
        "AuthorMap",
        "Decision",
        "Drop",
        "FilterEngine",
        "FilterRule",
        "Keep",
        "CommitRecord",
        "GitRepository",
        "Identity",
        "SourceRepositoryLike",
        "TargetRepositoryLike",
        "Event",
        "EventHandler",
        "EventLike",
        "TransplantEvent",
        "TransplantEventType",
        "ApplyConflict",
        "CommitWriteFailure",
        "ConfigError",
        "DiffComputationError",
        "DirtyWorkingTree",
        "InvalidFilterPattern",
        "InvalidRange",
        "NoRunInProgress",
        "RefNotFound",
        "RepositoryWriteError",
        "RunInProgress",
        "StateReadFailure",
        "StateWriteFailure",
        "TransplantError",
        "UnresolvedConflict",
        "UnsupportedMergeCommit",
        "__log_format__",
        "__log_level__",
    }


def test_public_module_names():
    # Public classes report the package as their module
    assert graft.Transplanter.__module__ == "graft"
    assert graft.TransplantError.__module__ == "graft"
