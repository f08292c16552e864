import logging

pkg_root = logging.getLogger("sf_session")


def getLogger(name: str | None = None) -> logging.Logger:
    """Child logger of the `sf_session` package logger."""
    if not name:
        return pkg_root
    if name.startswith(pkg_root.name + "."):
        name = name[len(pkg_root.name) + 1 :]
    return pkg_root.getChild(name)
