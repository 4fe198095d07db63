import bootpki.logging


def test_get_logger_attaches_one_handler():
    first = bootpki.logging.get_logger("bootpki.tests.logging")
    second = bootpki.logging.get_logger("bootpki.tests.logging")
    assert first is second
    assert len(second.handlers) == 1
