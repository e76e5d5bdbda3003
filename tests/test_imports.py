"""Basic import tests for the disk_state package."""


def test_import_package() -> None:
    import disk_state  # noqa: F401


def test_import_modules() -> None:
    from disk_state import comparator, inspector, reconciler, resource, storage  # noqa: F401


def test_import_cli_entrypoint() -> None:
    """Ensure the CLI module imports without missing dependencies."""

    __import__("disk_state.disk_state")


def test_version_is_discovered() -> None:
    import disk_state

    assert disk_state.__version__ != "unknown"
