from pathlib import Path

_RESOURCES = Path(__file__).parent.parent / "resources"


def resources_dir(folder: str) -> str:
    """
    Get the absolute path to a folder of the packaged resources.

    Path is resolved from the package itself, so the app can be started from any working directory.
    """
    return str((_RESOURCES / folder).resolve())
