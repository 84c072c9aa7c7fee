from binascii import unhexlify, hexlify


def bytes_to_int(be_bytes):
    """ Interprets a big-endian sequence of bytes as an integer. """
    if not be_bytes:
        return 0
    return int(hexlify(be_bytes), 16)


def int_to_bytes(value):
    """ Converts an integer to a big-endian sequence of bytes. """
    length = (value.bit_length() + 7) // 8
    s = '%x' % value
    return unhexlify(('0' * (len(s) % 2) + s).zfill(length * 2))


def int_to_mpint(value):
    """ Converts a non-negative integer to the sign padded SSH mpint body. """
    if not value:
        return b""
    encoded = int_to_bytes(value)
    if encoded and encoded[0] & 0x80:
        encoded = b'\x00' + encoded
    return encoded
