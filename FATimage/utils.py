# -*- coding: utf-8 -*-
import struct, os
import hexdump
from FATimage.debug import log
DEBUG=int(os.getenv('FATIMAGE_DEBUG', '0'))

def ceildiv(n, d):
    "Integer division rounding up"
    return -(-n // d)

def class2str(c, s):
    "Pretty-prints class contents"
    keys = list(c._kv.keys())
    keys.sort()
    for key in keys:
        o = c._kv[key][0]
        v = getattr(c, o)
        if type(v) == type(0):
            v = hex(v)
        s += '%x: %s = %s\n' % (key, o, v)
    return s

def common_getattr(c, name):
    "Decodes and stores an attribute following special class layout"
    try:
        i = c._vk[name]
    except KeyError:
        raise AttributeError(name)
    fmt = c._kv[i][1]
    cnt = struct.unpack_from(fmt, c._buf, i+c._i) [0]
    setattr(c, name,  cnt)
    return cnt

def pack(c):
    "Updates internal buffer"
    for k in list(c._kv.keys()):
        v = c._kv[k]
        c._buf[k:k+struct.calcsize(v[1])] = struct.pack(v[1], getattr(c, v[0]))
    return c._buf

def dump(title, buf):
    "Logs an hex dump of a serialized region"
    if not DEBUG&4: return
    log("%s (%d bytes):\n%s", title, len(buf), hexdump.hexdump(bytes(buf[:4096]), result='return'))

def parse_size(s):
    "Converts a size string with optional 'k', 'm' or 'g' postfix into bytes"
    s = str(s).strip().lower()
    mult = 1
    if s and s[-1] in 'kmg':
        mult = {'k':1<<10, 'm':1<<20, 'g':1<<30}[s[-1]]
        s = s[:-1]
    return int(s, 0) * mult
