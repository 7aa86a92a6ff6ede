import logging
import re

from buildmatrix.buildlog import BuildLog, LogLevel

LINE = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3}\] \[(Info|Debug|Warning|Error)\] ")


def test_line_format_and_order():
    log = BuildLog()
    log.info("one")
    log.debug("two")
    log.warning("three")
    log.error("four")
    assert len(log) == 4
    assert [LINE.match(l).group(1) for l in log.lines] == ["Info", "Debug", "Warning", "Error"]
    assert [l.split("] ", 2)[2] for l in log.lines] == ["one", "two", "three", "four"]


def test_sink_receives_every_line():
    seen = []
    log = BuildLog(sink=lambda level, line: seen.append((level, line)))
    line = log.warning("careful")
    assert seen == [(LogLevel.WARNING, line)]


class _Collect(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_lines_are_mirrored_to_logging():
    handler = _Collect()
    logger = logging.getLogger("buildmatrix.build")
    old_level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        BuildLog().error("boom")
    finally:
        logger.removeHandler(handler)
        logger.setLevel(old_level)
    assert [(r.levelno, r.getMessage()) for r in handler.records] == [(logging.ERROR, "boom")]


def test_lines_copy_is_detached():
    log = BuildLog()
    log.info("x")
    log.lines.append("y")
    assert len(log) == 1
