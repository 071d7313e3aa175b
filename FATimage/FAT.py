# -*- coding: utf-8 -*-
# Serializers for the FAT16 on-disk structures: boot sector, File Allocation
# Table and directory tables with VFAT long names.
#

import os, struct
from datetime import timezone
from FATimage import utils
from FATimage.utils import ceildiv
from FATimage.debug import log

DEBUG=int(os.getenv('FATIMAGE_DEBUG', '0'))

class FATException(Exception): pass

class CapacityExceeded(FATException):
    "The entry set can't be represented in a FAT16 volume"

class UnresolvedLinkTarget(FATException):
    "A link refers to a path not declared before it"

class MediumWriteFailure(FATException):
    "The output medium rejected or truncated a write"

SECTOR = 512
FAT16_MIN_CLUSTERS = 4085 # less clusters would make the volume look FAT12
FAT16_MAX_CLUSTERS = 65524
FAT16_EOC = 0xFFFF

ATTR_READONLY = 0x01
ATTR_HIDDEN = 0x02
ATTR_SYSTEM = 0x04
ATTR_LFN = 0x0F
ATTR_DIR = 0x10
ATTR_ARCHIVE = 0x20

# Prints "NO DOS" and halts: assembled to run at 7C3Eh, message at 7C57h
nodos_asm_3Eh = b'\xB8\xC0\x07\x8E\xD8\xBE\x57\x00\xAC\x08\xC0\x74\x09\xB4\x0E\xBB\x07\x00\xCD\x10\xEB\xF2\xF4\xEB\xFD\x4E\x4F\x20\x44\x4F\x53\x00'


class boot_fat16(object):
    "FAT16 Boot Sector"
    layout = { # { offset: (name, unpack string) }
    0x00: ('chJumpInstruction', '3s'),
    0x03: ('chOemID', '8s'),
    0x0B: ('wBytesPerSector', '<H'),
    0x0D: ('uchSectorsPerCluster', 'B'),
    0x0E: ('wReservedSectors', '<H'), # reserved sectors before 1st FAT (min 1, the boot)
    0x10: ('uchFATCopies', 'B'),
    0x11: ('wMaxRootEntries', '<H'),
    0x13: ('wTotalSectors', '<H'), # volume sectors if < 65536, or zero
    0x15: ('uchMediaDescriptor', 'B'),
    0x16: ('wSectorsPerFAT', '<H'),
    0x18: ('wSectorsPerTrack', '<H'),
    0x1A: ('wHeads', '<H'),
    0x1C: ('dwHiddenSectors', '<I'),
    0x20: ('dwTotalSectors', '<I'), # volume sectors if > 65535, or zero
    0x24: ('chPhysDriveNumber', 'B'), # 00h=floppy, 80h=fixed (used by boot code)
    0x25: ('uchCurrentHead', 'B'), # unused
    0x26: ('uchSignature', 'B'), # 0x29 (zero if following id, label and FS type absent)
    0x27: ('dwVolumeID', '<I'),
    0x2B: ('sVolumeLabel', '11s'),
    0x36: ('sFSType', '8s'),
    0x1FE: ('wBootSignature', '<H') # 55 AA
    } # Size = 0x200 (512 byte)

    def __init__ (self, s=None):
        self._i = 0
        self._buf = s or bytearray(512)
        self._kv = self.layout.copy()
        self._vk = {} # { name: offset}
        for k, v in list(self._kv.items()):
            self._vk[v[0]] = k
        self.__init2__()

    def __init2__(self):
        if not self.wBytesPerSector: return
        # Cluster size (bytes)
        self.cluster = self.wBytesPerSector * self.uchSectorsPerCluster
        # Offset of the 1st FAT copy
        self.fatoffs = self.wReservedSectors * self.wBytesPerSector
        # Offset of the fixed root directory table (immediately after the FATs)
        self.rootoffs = self.fatoffs + self.uchFATCopies * self.wSectorsPerFAT * self.wBytesPerSector
        # Data area offset (=cluster #2)
        self.dataoffs = self.rootoffs + (self.wMaxRootEntries*32)

    __getattr__ = utils.common_getattr

    def __str__ (self):
        return utils.class2str(self, "FAT16 Boot Sector\n")

    def pack(self):
        "Updates internal buffer"
        for k, v in list(self._kv.items()):
            self._buf[k:k+struct.calcsize(v[1])] = struct.pack(v[1], getattr(self, v[0]))
        self.__init2__()
        return self._buf

    def clusters(self):
        "Returns the number of clusters in the data area"
        return ((self.dwTotalSectors or self.wTotalSectors) - (self.dataoffs//self.wBytesPerSector)) // self.uchSectorsPerCluster

    def cl2offset(self, cluster):
        "Returns the real offset of a cluster"
        return self.dataoffs + (cluster-2)*self.cluster

    def root(self):
        "Returns the offset of the root directory"
        return self.rootoffs

    def fat(self, fatcopy=0):
        "Returns the offset of a FAT table (the first by default)"
        return self.fatoffs + fatcopy * self.wSectorsPerFAT * self.wBytesPerSector



class FATDirentry(object):
    "Builds FAT directory slots: the 32 byte 8+3 entry and its VFAT LFN companions"

    layout = { # { offset: (name, unpack string) }
    0x00: ('sName', '8s'),
    0x08: ('sExt', '3s'),
    0x0B: ('chDOSPerms', 'B'), # bit: 0=R(ead only) 1=H(idden) 2=S(ystem) 3=Volume Label 4=D(irectory) 5=A(rchive)
    0x0C: ('chFlags', 'B'), # bit 3/4 set: lowercase basename/extension (NT)
    0x0D: ('chReserved', 'B'), # creation time fine resolution in 10 ms units, range 0-199
    0x0E: ('wCTime', '<H'),
    0x10: ('wCDate', '<H'),
    0x12: ('wADate', '<H'),
    0x14: ('wClusterHi', '<H'), # always zero in FAT16
    0x16: ('wMTime', '<H'),
    0x18: ('wMDate', '<H'),
    0x1A: ('wClusterLo', '<H'),
    0x1C: ('dwFileSize', '<I') }

    def __init__ (self, s=None):
        self._i = 0
        self._buf = s or bytearray(32)
        self._kv = self.layout.copy()
        self._vk = {} # { name: offset}
        for k, v in list(self._kv.items()):
            self._vk[v[0]] = k

    __getattr__ = utils.common_getattr

    def pack(self):
        "Updates internal buffer"
        return utils.pack(self)

    def __str__ (self):
        return utils.class2str(self, "FAT Direntry\n")

    def Start(self, cluster=None):
        "Gets or sets cluster WORDs in slot"
        if cluster != None:
            self.wClusterHi = cluster >> 16
            self.wClusterLo = cluster & 0xFFFF
        return (self.wClusterHi<<16) | self.wClusterLo

    def SetTime(self, t):
        "Sets creation, access and modification stamps from a datetime"
        if t.tzinfo is not None:
            t = t.astimezone(timezone.utc)
        if not 1980 <= t.year <= 2107:
            raise FATException("Timestamp %s can't be represented in FAT (1980-2107)" % t)
        date = self.MakeDosDate((t.year, t.month, t.day))
        tm = self.MakeDosTime((t.hour, t.minute, t.second))
        self.chReserved = (t.second % 2)*100 + t.microsecond//10000
        self.wCTime = self.wMTime = tm
        self.wCDate = self.wADate = self.wMDate = date

    @staticmethod
    def MakeDosTime(t):
        "Encodes a tuple (hour, minute, second) into a DOS time WORD"
        return (t[0] << 11) | (t[1] << 5) | (t[2]//2)

    @staticmethod
    def MakeDosDate(t):
        "Encodes a tuple (year, month, day) into a DOS date WORD"
        return ((t[0]-1980) << 9) | (t[1] << 5) | (t[2])

    @staticmethod
    def ParseDosDate(wDate):
        "Decodes a DOS date WORD into a tuple (year, month, day)"
        return (wDate>>9)+1980, (wDate>>5)&0xF, wDate&0x1F

    @staticmethod
    def ParseDosTime(wTime):
        "Decodes a DOS time WORD into a tuple (hour, minute, second)"
        return wTime>>11, (wTime>>5)&0x3F, (wTime&0x1F)*2

    special_short_chars = ''' "*/:<>?\\|[]+.,;=''' + ''.join([chr(c) for c in range(32)])
    special_lfn_chars = '''"*/:<>?\\|''' + ''.join([chr(c) for c in range(32)])

    @staticmethod
    def IsValidDosName(name, lfn=False):
        if not name: return False
        if lfn:
            special = FATDirentry.special_lfn_chars
        else:
            special = FATDirentry.special_short_chars
            if max(name) > '\x7E': return False
        for c in special:
            if c in name:
                return False
        return True

    @staticmethod
    def IsShortName(name):
        "Checks if name can be stored as an 8+3 DOS short name without loss (case apart)"
        if name in ('.', '..'): # special case
            return True
        name, ext = os.path.splitext(name)
        if not 1 <= len(name) <= 8 or len(ext) > 4:
            return False
        if ext:
            ext = ext[1:]
            if ext and not FATDirentry.IsValidDosName(ext):
                return False
        return FATDirentry.IsValidDosName(name)

    @staticmethod
    def lfn_count(name):
        "Returns the number of LFN slots required to store name"
        if FATDirentry.IsShortName(name):
            return 0
        return ceildiv(len(name.encode('utf_16_le'))//2, 13)

    @staticmethod
    def GenRawShortName(name, id=1):
        """Returns the raw 11 bytes short name for name and the NT case flags.
        Names needing LFN slots get a BASE~id alias."""
        chFlags = 0
        if name in ('.', '..'):
            return ('%-11s' % name).encode('ascii'), chFlags
        if FATDirentry.IsShortName(name):
            name, ext = os.path.splitext(name)
            ext = ext[1:]
            if name.islower():
                chFlags |= 8
            if ext.islower():
                chFlags |= 16
            short = ('%-8s%-3s' % (name, ext)).upper()
        else:
            short = FATDirentry.GenRawShortFromLongName(name, id)
        if DEBUG&2: log("GenRawShortName returned %s:%d", short, chFlags)
        return short.encode('ascii'), chFlags

    @staticmethod
    def GenRawShortFromLongName(name, id=1):
        "Generates a DOS 8+3 short name from a long one (Windows 95 style)"
        nname = name.replace(' ', '').lstrip('.')
        nname, ext = os.path.splitext(nname)
        def clean(s):
            return ''.join([(c, '_')[c in FATDirentry.special_short_chars or c > '\x7E'] for c in s])
        nname = clean(nname) or '_'
        ext = clean(ext[1:4])
        tilde = '~%d' % id
        i = 8 - len(tilde)
        if i > len(nname): i = len(nname)
        short = ('%-8s%-3s' % (nname[:i] + tilde, ext)).upper()
        if DEBUG&2: log("GenRawShortFromLongName returned %s", short)
        return short

    @staticmethod
    def Checksum(name):
        "Calculates the 8+3 DOS short name LFN checksum"
        sum = 0
        for c in bytearray(name):
            sum = ((sum & 1) << 7) + (sum >> 1) + c
            sum &= 0xff
        return sum

    @staticmethod
    def GenRawLfnSlots(longname, shortname):
        "Returns the LFN slots for longname, in disk order (last slot first)"
        longname = longname.encode('utf_16_le')
        if len(longname) > 510:
            raise FATException("Long name '%s' is >255 characters!" % longname.decode('utf_16_le'))
        csum = FATDirentry.Checksum(shortname)
        # If the last slot isn't filled, we must NULL terminate
        if len(longname) % 26:
            longname += b'\x00\x00'
        # And eventually pad with 0xFF, also
        if len(longname) % 26:
            longname += b'\xFF'*(26 - len(longname)%26)
        slots = len(longname)//26
        B=bytearray()
        while slots:
            b = bytearray(32)
            b[0] = slots
            j = (slots-1)*26
            b[1:11] = longname[j: j+10]
            b[11] = ATTR_LFN
            b[13] = csum
            b[14:26] = longname[j+10: j+22]
            b[28:32] = longname[j+22: j+26]
            B += b
            slots -= 1
        B[0] = B[0] | 0x40 # mark the last slot (first to appear)
        return B

    @staticmethod
    def LongName(buf):
        "Decodes the long name from a run of LFN slots followed by their short slot"
        i = len(buf)-64
        ln = b''
        while i >= 0:
            ln += buf[i+1:i+1+10] + \
            buf[i+14:i+14+12] + \
            buf[i+28:i+28+4]
            i -= 32
        ln = bytes(ln).decode('utf-16le', 'surrogatepass')
        i = ln.find('\x00') # ending NULL may be omitted!
        if i < 0:
            return ln
        else:
            return ln[:i]

    @staticmethod
    def GenRawSlot(shortname, chFlags=0, attributes=0, cluster=0, size=0, t=None):
        "Returns a 32 byte directory slot"
        e = FATDirentry()
        e.sName = shortname[:8]
        e.sExt = shortname[8:11]
        e.chDOSPerms = attributes
        e.chFlags = chFlags
        e.chReserved = e.wCTime = e.wCDate = e.wADate = e.wMTime = e.wMDate = 0
        e.Start(cluster)
        e.dwFileSize = size
        if t is not None:
            e.SetTime(t)
        return e.pack()



def _attributes(tree, index):
    e = tree[index]
    attr = 0
    if e.read_only: attr |= ATTR_READONLY
    if e.hidden: attr |= ATTR_HIDDEN
    if e.system: attr |= ATTR_SYSTEM
    if e.archive: attr |= ATTR_ARCHIVE
    # a link to a directory is a directory
    if tree[tree.resolve(index)].isdir(): attr |= ATTR_DIR
    return attr

def make_dirtable(tree, geometry, index):
    """Serializes the directory table of entry 'index': the '.' and '..' slots
    (except in root), then every child preceded by its LFN slots. The table is
    padded to the root capacity or to the clusters allocated to the directory."""
    dir = tree[index]
    buf = bytearray()
    if index:
        t = dir.mtime or geometry.default_time
        parent = dir.parent and geometry.clusters[dir.parent] or 0
        buf += FATDirentry.GenRawSlot(FATDirentry.GenRawShortName('.')[0], 0, ATTR_DIR, geometry.clusters[index], 0, t)
        buf += FATDirentry.GenRawSlot(FATDirentry.GenRawShortName('..')[0], 0, ATTR_DIR, parent, 0, t)

    # 8+3 names are reserved first, so aliases can't collide with them
    used = set()
    for i in dir.children:
        name = tree[i].name
        if FATDirentry.IsShortName(name):
            used.add(FATDirentry.GenRawShortName(name)[0])

    for i in dir.children:
        e = tree[i]
        if FATDirentry.lfn_count(e.name):
            id = 1
            while 1:
                shortname, chFlags = FATDirentry.GenRawShortName(e.name, id)
                if shortname not in used: break
                id += 1
            buf += FATDirentry.GenRawLfnSlots(e.name, shortname)
        else:
            shortname, chFlags = FATDirentry.GenRawShortName(e.name)
        used.add(shortname)
        attr = _attributes(tree, i)
        size = geometry.sizes[i]
        if attr & ATTR_DIR: size = 0
        buf += FATDirentry.GenRawSlot(shortname, chFlags, attr, geometry.clusters[i], size, e.mtime or geometry.default_time)

    if index:
        room = geometry.allocation[index] * geometry.cluster
    else:
        room = geometry.maxRootEntries * 32
    assert len(buf) <= room
    buf += bytearray(room - len(buf))
    if DEBUG&2: log("Directory table of '%s': %d slots, %d bytes", tree.path(index), len(buf)//32, room)
    utils.dump("Directory table of '%s'" % tree.path(index), buf)
    return buf

def make_fat(geometry):
    """Builds a FAT16 table for a volume whose clusters are allocated in
    declaration order: each slot points to the next cluster, and the last
    cluster of every file or directory is marked End Of Chain."""
    fat = bytearray(geometry.fatSectors * SECTOR)
    struct.pack_into('<BBH', fat, 0, geometry.media_byte, 0xFF, FAT16_EOC)
    n = geometry.dataClusters
    if n > 2:
        fat[4:2*n] = struct.pack('<%dH' % (n-2), *range(3, n+1))
    for first, count in geometry.chains:
        last = first + count - 1
        struct.pack_into('<H', fat, 2*last, FAT16_EOC)
        if DEBUG&2: log("Chain %d-%d terminated", first, last)
    utils.dump("FAT", fat)
    return fat

def make_boot(geometry):
    "Builds the 512 bytes FAT16 boot sector for a computed geometry"
    boot = boot_fat16()
    boot.chJumpInstruction = b'\xEB\x3C\x90' # JMP opcode is mandatory, or CHKDSK won't recognize filesystem!
    boot._buf[0x3E:0x3E+len(nodos_asm_3Eh)] = nodos_asm_3Eh
    boot.chOemID = geometry.oem_id
    boot.wBytesPerSector = SECTOR
    boot.uchSectorsPerCluster = geometry.clusterSize
    boot.wReservedSectors = geometry.reservedSectors
    boot.uchFATCopies = geometry.fatCopies
    boot.wMaxRootEntries = geometry.maxRootEntries
    sectors = geometry.totalSectors
    if sectors < 65536:
        boot.wTotalSectors = sectors
        boot.dwTotalSectors = 0
    else:
        boot.wTotalSectors = 0
        boot.dwTotalSectors = sectors
    boot.uchMediaDescriptor = geometry.media_byte
    boot.wSectorsPerFAT = geometry.fatSectors
    boot.wSectorsPerTrack = 0x20
    boot.wHeads = 0x40
    boot.dwHiddenSectors = 0 # not partitioned
    boot.chPhysDriveNumber = 0x80
    boot.uchCurrentHead = 0
    boot.uchSignature = 0x29
    boot.dwVolumeID = geometry.serial
    boot.sVolumeLabel = geometry.label
    boot.sFSType = b'FAT16   '
    boot.wBootSignature = 0xAA55
    buf = boot.pack()
    if DEBUG&2: log("%s", boot)
    return buf
