# -*- coding: utf-8 -*-
import os, functools
from concurrent.futures import ThreadPoolExecutor, as_completed
from FATimage import disk
from FATimage.FAT import *
from FATimage.geometry import calc_geometry
from FATimage.debug import log
DEBUG=int(os.getenv('FATIMAGE_DEBUG', '0'))

""" fat16_mkimage allowed params={}:

all the calc_geometry ones (serial, label, oem_id, fat_copies, reserved_size,
media_byte, extra_space, default_time), and:

workers

number of threads issuing region writes to the medium at the same time.
Default: 4. With 1, regions are written one after another.

show_info

if set, prints a summary of the volume built to the console. """


def _write(medium, data, offset):
    "Writes a region, turning medium errors and short writes into MediumWriteFailure"
    try:
        n = medium.write(data, offset)
    except OSError as e:
        raise MediumWriteFailure("Can't write %d bytes @0x%X: %s" % (len(data), offset, e)) from e
    if n is not None and n != len(data):
        raise MediumWriteFailure("Short write @0x%X: %d bytes of %d" % (offset, n, len(data)))
    if DEBUG&8: log("Wrote %d bytes @0x%X", len(data), offset)

def _copy(medium, src, size, offset):
    "Streams a file content at offset, one chunk after another"
    for s in disk.source_chunks(src, size):
        _write(medium, s, offset)
        offset += len(s)

def _run(tasks, workers):
    "Runs write tasks, re-raising the first failure"
    if workers < 2:
        for task in tasks:
            task()
        return
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(task) for task in tasks]
        try:
            for future in as_completed(futures):
                future.result()
        except BaseException:
            for future in futures:
                future.cancel()
            raise


def fat16_mkimage(tree, medium, params={}):
    """Builds a FAT16 image of tree on medium, a path, a binary file object or
    an object with a write(data, offset) method. The whole layout is computed
    before writing anything. Returns the Geometry of the volume."""
    verbose = params.get('show_info', 0)
    workers = params.get('workers', 4)
    if workers < 1:
        raise FATException("At least one writer is needed, not %d" % workers)

    geometry = calc_geometry(tree, params)
    boot = make_boot(geometry)
    fat = make_fat(geometry)
    root = make_dirtable(tree, geometry, 0)
    tables = {}
    for i, e in tree:
        if e.isdir():
            tables[i] = make_dirtable(tree, geometry, i)

    opened = isinstance(medium, (str, os.PathLike))
    medium = disk.open_medium(medium)
    try:
        # pre-allocate space, including final padding
        last = geometry.size() - 1
        _write(medium, b'\x00', last)
        if DEBUG&8: log("Pre allocated space by writing a zero @0x%X", last)

        tasks = []
        for i, e in tree:
            if e.islink(): continue
            offset = geometry.cl2offset(geometry.clusters[i])
            if DEBUG&8: log("Writing %s @0x%X", e, offset)
            if e.isdir():
                tasks.append(functools.partial(_write, medium, tables[i], offset))
            else:
                tasks.append(functools.partial(_copy, medium, e.source, geometry.sizes[i], offset))
        tasks.append(functools.partial(_write, medium, root, geometry.root()))
        tasks.append(functools.partial(_write, medium, boot, 0))
        for i in range(geometry.fatCopies):
            tasks.append(functools.partial(_write, medium, fat, geometry.fat(i)))
        _run(tasks, workers)
    finally:
        if opened:
            medium.close()

    if verbose:
        print("Successfully built a FAT16 volume of %.02f MiB.\n%d clusters of %.1f KB, %d in use." % \
        (geometry.size()/(1<<20), geometry.totalClusters, geometry.cluster/1024, geometry.dataClusters-1))
        print("\nFAT #1 @0x%X, Root @0x%X, Data Region @0x%X" % (geometry.fat(), geometry.root(), geometry.dataOffset))
    return geometry
