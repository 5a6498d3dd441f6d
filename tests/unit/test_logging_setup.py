import logging
import logging.handlers

from portfolio_engine.core.logging import setup_logging


def test_rotating_file_handler_added(tmp_path):
    log_file = tmp_path / "logs" / "engine.log"

    setup_logging("DEBUG", str(log_file), max_bytes=1024, backup_count=2)
    logging.getLogger("portfolio_engine.test").info("hello")

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)
    assert log_file.exists()
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_unknown_level_falls_back_to_info():
    setup_logging("chatty")
    assert logging.getLogger().level == logging.INFO
