DEFAULT_CHUNK_SIZE = 10 * 2 ** 20
DEFAULT_READ_SIZE = 64 * 2 ** 10
