import logging
import pytest

from src.fragment_normalizer.utils.logging import setup_logging, worker_configurer


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for h in root.handlers[:]:
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def test_setup_logging_writes_log_file(tmp_path, restore_root_logger):
    session = setup_logging(tmp_path / "out")
    logging.getLogger("fragment_normalizer.test").debug("per-sample detail")
    logging.getLogger("fragment_normalizer.test").info("phase banner")
    session.stop()

    text = session.log_file.read_text()
    assert session.log_file == tmp_path / "out" / "log.txt"
    assert "Logging initialized" in text
    assert "DEBUG - per-sample detail" in text
    assert "INFO - phase banner" in text


def test_worker_records_reach_the_log(tmp_path, restore_root_logger):
    session = setup_logging(tmp_path)
    # Same hook the pool initializer runs in each worker
    worker_configurer(session.queue)
    assert len(logging.getLogger().handlers) == 1
    logging.getLogger("worker").error("sample failed")
    session.stop()
    assert "ERROR - sample failed" in session.log_file.read_text()
