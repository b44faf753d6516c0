import struct

# The console bus is 16 bit big endian, so that is the default here.


def p16(num, endian: str = 'big'):
    if endian.lower() == 'little':
        return struct.pack('<H', num)
    return struct.pack('>H', num)


def u16(data, endian: str = 'big'):
    if endian.lower() == 'little':
        return struct.unpack('<H', data)[0]
    return struct.unpack('>H', data)[0]


def words(data) -> [int]:
    """words(data) -> list

    Splits an even-length byte string into big endian 16 bit words.

    Examples:
       >>> words(b'\\x12\\x34\\xab\\xcd')
       [4660, 43981]
    """
    if len(data) % 2 != 0:
        raise ValueError("words(): data must have an even length")
    return list(struct.unpack('>%dH' % (len(data) // 2), bytes(data)))
