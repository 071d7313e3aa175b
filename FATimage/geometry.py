# -*- coding: utf-8 -*-

#
# FAT16 layout computation. Every phase produces a read-only table indexed
# like the Tree entries; nothing is written back into the Tree.
#

import os
from datetime import datetime
from FATimage import disk
from FATimage.FAT import *
from FATimage.utils import ceildiv
from FATimage.debug import log
DEBUG=int(os.getenv('FATIMAGE_DEBUG', '0'))

""" calc_geometry allowed params={}:

serial

volume serial number, an integer or 4 bytes. Default: random.

label

volume label in the boot sector, up to 11 bytes. Default: "nos-fat".

oem_id

OEM 8-bytes identifier in the boot sector. Default: "nos-fat".

fat_copies

number of FAT tables (default: 1).

reserved_size

reserved sectors before FAT table, boot sector included. Default: 1.

media_byte

medium type code to put in the boot sector and FAT slot #0. Default: 0xF8
(hard disk).

extra_space

bytes of unused space to leave at the end of the data area. Default: 0.
More space is added anyway if the volume would have less than 4085 clusters.

default_time

datetime stamped on entries declared without one. Default: none (zeroed
date and time fields). """

CLUSTER_SIZES = (4, 8, 16, 32) # sectors; 64 is the last resort


def check_params(params):
    "Validates the format parameters, returning a dictionary with defaults applied"
    p = {}
    p['fat_copies'] = params.get('fat_copies', 1)
    if not 1 <= p['fat_copies'] <= 255:
        raise FATException("FAT copies must be between 1 and 255, not %d" % p['fat_copies'])
    p['reserved_size'] = params.get('reserved_size', 1)
    if not 1 <= p['reserved_size'] <= 0xFFFF:
        raise FATException("Reserved sectors must be between 1 and 65535, not %d" % p['reserved_size'])
    p['media_byte'] = params.get('media_byte', 0xF8)
    if p['media_byte'] != 0xF0 and not 0xF8 <= p['media_byte'] <= 0xFF:
        raise FATException("Invalid media descriptor %Xh" % p['media_byte'])
    p['extra_space'] = params.get('extra_space', 0)
    if p['extra_space'] < 0:
        raise FATException("Extra space can't be negative")

    serial = params.get('serial')
    if serial is None:
        serial = os.urandom(4)
    if isinstance(serial, (bytes, bytearray)):
        if len(serial) != 4:
            raise FATException("Volume serial must be 4 bytes long")
        serial = int.from_bytes(serial, 'little')
    if not 0 <= serial <= 0xFFFFFFFF:
        raise FATException("Volume serial %X does not fit 32 bits" % serial)
    p['serial'] = serial

    for key, size in (('label', 11), ('oem_id', 8)):
        s = params.get(key, 'nos-fat')
        if isinstance(s, str):
            try:
                s = s.encode('ascii')
            except UnicodeEncodeError:
                raise FATException("%s '%s' must be ASCII" % (key, s))
        if len(s) > size:
            raise FATException("%s '%s' is longer than %d bytes" % (key, s.decode('ascii', 'replace'), size))
        p[key] = s.ljust(size)

    p['default_time'] = params.get('default_time')
    if p['default_time'] is not None and not isinstance(p['default_time'], datetime):
        raise FATException("Default time must be a datetime")
    return p


def calc_cluster_size(sectors, entries):
    """Returns the smallest cluster size (in sectors) keeping a volume of
    'sectors' data sectors and 'entries' files and directories in FAT16 range"""
    for size in CLUSTER_SIZES:
        if sectors < size * (FAT16_MIN_CLUSTERS + entries):
            return size
    if sectors < 64 * (FAT16_MAX_CLUSTERS + 1):
        return 64
    raise CapacityExceeded("Things have gotten out of hand, and won't fit on a FAT16 volume. Sectors:%d, Files:%d" % (sectors, entries))


class Geometry(object):
    "Layout of a FAT16 volume built from a Tree"

    def __init__ (self, tree, params={}):
        p = check_params(params)
        self.fatCopies = p['fat_copies']
        self.reservedSectors = p['reserved_size']
        self.media_byte = p['media_byte']
        self.serial = p['serial']
        self.label = p['label']
        self.oem_id = p['oem_id']
        self.default_time = p['default_time']
        self.extraSpace = p['extra_space']

        self.lfn = tuple([FATDirentry.lfn_count(tree[i].name) for i in range(len(tree))])
        sizes = self._calc_sizes(tree)
        self._calc_cluster_size(tree, sizes)
        extra = self.extraSpace
        while 1:
            self.extraSpace = extra
            self._assign_clusters(tree, list(sizes))
            if self.clusterSize == 64 or \
            self.dataClusters + ceildiv(self.extraSpace, self.cluster) <= FAT16_MAX_CLUSTERS:
                break
            # rounding each entry to whole clusters overflowed: try bigger ones
            if DEBUG&1: log("%d clusters of %d sectors are too many, doubling cluster size", self.dataClusters, self.clusterSize)
            self.clusterSize *= 2
            self.cluster = self.clusterSize * SECTOR
        self._calc_regions()

    def __str__ (self):
        return "FAT16 geometry: %d sectors, %d clusters of %d sectors (%d used), %d root entries, %d sectors per FAT" % \
        (self.totalSectors, self.totalClusters, self.clusterSize, self.dataClusters, self.maxRootEntries, self.fatSectors)

    def _calc_sizes(self, tree):
        "Sizes files from their sources and directories from their slots count"
        sizes = [0] * len(tree)
        for i, e in [(0, tree[0])] + list(tree):
            if e.isdir():
                sizes[i] = (len(e.children) + sum([self.lfn[c] for c in e.children])) * 32
            elif not e.islink():
                sizes[i] = disk.source_size(e.source)
        return sizes

    def _calc_cluster_size(self, tree, sizes):
        self.entryCount = len([i for i, e in tree if not e.islink()])
        self.dataSectors = sum([sizes[i] for i, e in tree if not e.islink()]) / SECTOR
        self.clusterSize = calc_cluster_size(self.dataSectors + ceildiv(self.extraSpace, SECTOR), self.entryCount)
        self.cluster = self.clusterSize * SECTOR
        if DEBUG&1: log("Calculated a cluster size of %d sectors for %d data sectors", self.clusterSize, self.dataSectors)

    def _assign_clusters(self, tree, sizes):
        "Places files and directories one after another, in declaration order"
        clusters = [0] * len(tree)
        allocation = [0] * len(tree)
        chains = []
        cluster = 2
        for i, e in tree:
            if e.islink():
                # The target must be declared before the link
                target = tree.resolve(i)
                clusters[i] = clusters[target]
                sizes[i] = sizes[target]
                if DEBUG&1: log("Link '%s' shares cluster %d", tree.path(i), clusters[i])
                continue
            n = sizes[i]
            if e.isdir(): n += 64 # '.' and '..'
            allocation[i] = max(1, ceildiv(n, self.cluster)) # empty entries own a cluster, too
            clusters[i] = cluster
            chains.append((cluster, allocation[i]))
            if DEBUG&1: log("Assigned clusters %d-%d to '%s'", cluster, cluster+allocation[i]-1, tree.path(i))
            cluster += allocation[i]
        self.sizes = tuple(sizes)
        self.clusters = tuple(clusters)
        self.allocation = tuple(allocation)
        self.chains = tuple(chains)
        self.dataClusters = cluster - 1
        if self.dataClusters < FAT16_MIN_CLUSTERS:
            self.extraSpace = max(self.extraSpace, (FAT16_MIN_CLUSTERS - self.dataClusters) * self.cluster)

    def _calc_regions(self):
        root_slots = self.sizes[0] // 32
        if root_slots > 0xFFF0:
            raise CapacityExceeded("Root directory needs %d slots, more than 65520" % root_slots)
        # Whole sectors, at least one
        self.maxRootEntries = max(16, ceildiv(root_slots, 16) * 16)
        self.emptyClusters = ceildiv(self.extraSpace, self.cluster)
        self.totalClusters = self.dataClusters + self.emptyClusters
        if self.totalClusters > FAT16_MAX_CLUSTERS:
            raise CapacityExceeded("%d clusters of %d sectors exceed FAT16 maximum of %d" % (self.totalClusters, self.clusterSize, FAT16_MAX_CLUSTERS))
        self.fatSectors = ceildiv((self.totalClusters + 2) * 2, SECTOR)
        self.rootDirSectors = self.maxRootEntries * 32 // SECTOR
        self.totalSectors = self.reservedSectors + self.fatCopies * self.fatSectors + \
        self.rootDirSectors + self.totalClusters * self.clusterSize
        self.rootDirOffset = SECTOR * (self.reservedSectors + self.fatCopies * self.fatSectors)
        self.dataOffset = self.rootDirOffset + self.rootDirSectors * SECTOR
        if DEBUG&1: log("%s", self)
        if DEBUG&1: log("FAT #1 @0x%X, Root @0x%X, Data Region @0x%X", self.fat(), self.rootDirOffset, self.dataOffset)

    def size(self):
        "Returns the image size in bytes"
        return self.totalSectors * SECTOR

    def fat(self, fatcopy=0):
        "Returns the offset of a FAT table (the first by default)"
        return SECTOR * (self.reservedSectors + fatcopy * self.fatSectors)

    def root(self):
        "Returns the offset of the root directory"
        return self.rootDirOffset

    def cl2offset(self, cluster):
        "Returns the real offset of a cluster"
        return self.dataOffset + (cluster-2)*self.cluster


def calc_geometry(tree, params={}):
    "Computes the FAT16 layout of a Tree. Raises CapacityExceeded or UnresolvedLinkTarget."
    return Geometry(tree, params)
