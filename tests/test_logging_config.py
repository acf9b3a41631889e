from loguru import logger

from recipe_fetch.logging_config import domain_logger, setup_logging


def test_file_sink_tags_records_with_domain(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    setup_logging(verbose=True, log_file=log_file)
    try:
        domain_logger("seriouseats.com").warning("blocked on standard fetch")
        logger.info("run finished")
        logger.complete()
        # Read before removing the sink; closing it compresses the file
        lines = log_file.read_text().splitlines()
    finally:
        logger.remove()

    scrape_line = next(line for line in lines if "blocked on standard fetch" in line)
    summary_line = next(line for line in lines if "run finished" in line)

    assert "| WARNING  | seriouseats.com |" in scrape_line
    assert "| INFO     | - |" in summary_line
