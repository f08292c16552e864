from sf_session.logger import getLogger, pkg_root


def test_logger_creation():
    logger = getLogger(None)
    assert logger == pkg_root

    child_logger = getLogger("test_child")
    assert child_logger.name == f"{pkg_root.name}.test_child"
    assert child_logger.parent == pkg_root


def test_logger_accepts_module_names():
    assert getLogger("sf_session.client").name == "sf_session.client"
