# -*- coding: utf-8 -*-

#
# Content sources (where file data comes from) and output media (where the
# image goes to). A medium is anything with a write(data, offset) method
# accepting out of order and concurrent writes to disjoint ranges.
#

import io, os, threading
from FATimage.FAT import FATException
from FATimage.debug import log
DEBUG=int(os.getenv('FATIMAGE_DEBUG', '0'))

CHUNK = 1<<20


class stream_source(object):
    "File content of known size coming from an iterable of byte chunks"
    def __init__ (self, chunks, size):
        self.chunks = chunks
        self.size = size

    def __str__ (self):
        return "stream source of %d bytes" % self.size


def source_size(src):
    "Returns the byte length of a content source"
    if isinstance(src, (bytes, bytearray, memoryview)):
        return memoryview(src).nbytes
    if isinstance(src, stream_source):
        return src.size
    if isinstance(src, (str, os.PathLike)):
        return os.stat(src).st_size
    if hasattr(src, 'read'):
        # bytes from current position up to the end
        pos = src.tell()
        try:
            return os.fstat(src.fileno()).st_size - pos
        except (OSError, AttributeError):
            end = src.seek(0, 2)
            src.seek(pos)
            return end - pos
    raise FATException("Unsupported content source %s" % type(src))


def source_chunks(src, size):
    "Yields the contents of a source, checking they are exactly size bytes"
    def read_all(fp):
        while 1:
            s = fp.read(CHUNK)
            if not s: break
            yield s

    if isinstance(src, (bytes, bytearray, memoryview)):
        chunks = [src]
    elif isinstance(src, stream_source):
        chunks = src.chunks
    elif isinstance(src, (str, os.PathLike)):
        chunks = _read_path(src)
    else:
        chunks = read_all(src)
    done = 0
    for s in chunks:
        done += len(s)
        if done > size: break
        yield s
    if done != size:
        raise FATException("Source %s gave %s bytes instead of %d" % (src, ('more than %d' % size, done)[done < size], size))

def _read_path(path):
    with open(path, 'rb') as fp:
        while 1:
            s = fp.read(CHUNK)
            if not s: break
            yield s



class disk(object):
    """An image file or device written at absolute offsets. Positional writes
    make concurrent calls safe; where they are missing a lock serializes
    seek and write."""
    def __str__ (self):
        return "FATimage disk '%s'" % self.name

    def __init__ (self, name, truncate=True):
        self.name = name
        flags = os.O_RDWR | os.O_CREAT | getattr(os, 'O_BINARY', 0)
        if truncate:
            flags |= os.O_TRUNC
        self.fd = os.open(name, flags, 0o666)
        self.lock = threading.Lock()
        if DEBUG&8: log("Opened %s", self)

    def __enter__ (self):
        return self

    def __exit__ (self, *args):
        self.close()

    def write(self, data, offset):
        view = memoryview(data)
        done = 0
        while done < len(view):
            if hasattr(os, 'pwrite'):
                n = os.pwrite(self.fd, view[done:], offset+done)
            else:
                with self.lock:
                    os.lseek(self.fd, offset+done, 0)
                    n = os.write(self.fd, view[done:])
            if not n: break
            done += n
        return done

    def close(self):
        if self.fd is not None:
            os.close(self.fd)
            self.fd = None



class ramdisk(object):
    "An image kept in memory"
    def __init__ (self):
        self.buf = bytearray()
        self.lock = threading.Lock()

    def __str__ (self):
        return "FATimage ramdisk of %d bytes" % len(self.buf)

    def write(self, data, offset):
        n = memoryview(data).nbytes
        with self.lock:
            if offset + n > len(self.buf):
                self.buf += bytearray(offset + n - len(self.buf))
            self.buf[offset:offset+n] = data
        return n

    def getvalue(self):
        return bytes(self.buf)



class fileobj(object):
    "Adapts a seekable binary file object (i.e. BytesIO) to offset writes"
    def __init__ (self, fp):
        self.fp = fp
        self.lock = threading.Lock()

    def __str__ (self):
        return "FATimage file object %s" % self.fp

    def write(self, data, offset):
        with self.lock:
            self.fp.seek(offset)
            return self.fp.write(data)


def open_medium(target):
    "Returns a medium for a path, a file object or a medium object itself"
    if isinstance(target, (str, os.PathLike)):
        return disk(target)
    if isinstance(target, io.IOBase):
        return fileobj(target)
    if hasattr(target, 'write'):
        return target
    raise FATException("Unsupported output medium %s" % type(target))
