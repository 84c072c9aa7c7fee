import sys
import asyncio
import logging
import functools
import unittest

from sencrypt.crypto.provider import default_provider
from sencrypt.keys.material import RSAPrivateKey


class ColorHandler(logging.StreamHandler):

    level_color = {
        logging.DEBUG: "black",
        logging.INFO: "light_gray",
        logging.WARNING: "yellow",
        logging.ERROR: "red"
    }

    color_code = dict(
        black=30,
        red=31,
        green=32,
        yellow=33,
        blue=34,
        magenta=35,
        cyan=36,
        white=37,
        light_gray='0;37',
        dark_gray='1;30'
    )

    def emit(self, record):
        try:
            msg = self.format(record)
            color_name = self.level_color.get(record.levelno, "black")
            color_code = self.color_code[color_name]
            stream = self.stream
            stream.write(f'\x1b[{color_code}m{msg}\x1b[0m')
            stream.write(self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


HANDLER = ColorHandler(sys.stdout)
HANDLER.setFormatter(
    logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
)
logging.getLogger().addHandler(HANDLER)


@functools.lru_cache(maxsize=None)
def get_test_key(key_size: int = 2048, slot: int = 0) -> RSAPrivateKey:
    """
    Generated once per (size, slot) and shared by the test run, use a different
    slot to get an unrelated key of the same size
    """
    return default_provider.generate_rsa_key(key_size)


class AsyncioTestCase(unittest.IsolatedAsyncioTestCase):

    TIMEOUT = 120.0

    maxDiff = None

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return asyncio.get_running_loop()

    async def run_with_timeout(self, coro):
        return await asyncio.wait_for(coro, self.TIMEOUT)
