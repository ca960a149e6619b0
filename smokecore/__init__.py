import logging

logging.basicConfig(
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s',
    level=logging.INFO,
)
logging.getLogger('httpx').setLevel(logging.WARNING)


def enable_debug_logging():
    logging.getLogger('smokecore.supervisor').setLevel(logging.DEBUG)
    logging.getLogger('smokecore.client').setLevel(logging.DEBUG)
    logging.getLogger('smokecore.sse').setLevel(logging.DEBUG)
