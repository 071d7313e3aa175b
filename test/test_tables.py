# -*- coding: utf-8 -*-

import struct
from datetime import datetime, timezone, timedelta
import pytest
from FATimage.FAT import *
from FATimage.geometry import calc_geometry
from FATimage.tree import Tree
from FATimage.disk import stream_source


def slots(buf):
    return [buf[i:i+32] for i in range(0, len(buf), 32)]

def word(buf, offset):
    return struct.unpack_from('<H', buf, offset)[0]


@pytest.fixture
def sample():
    tree = Tree()
    tree.create('/file', b'x' * 1500)
    tree.mkdir('/sub')
    tree.link('/sub/link', '/file')
    return tree, calc_geometry(tree, {'serial': 0x12345678, 'label': 'TEST'})


def test_fat_heads(sample):
    tree, g = sample
    fat = make_fat(g)
    assert len(fat) == g.fatSectors * 512 == 16 * 512
    assert fat[:4] == b'\xF8\xFF\xFF\xFF'

def test_fat_chains():
    tree = Tree()
    tree.create('/a', b'a' * 5000)
    tree.mkdir('/d')
    tree.create('/d/b', b'')
    g = calc_geometry(tree)
    fat = make_fat(g)
    # 5000 bytes in 2048 byte clusters
    assert [word(fat, 2*c) for c in (2, 3, 4)] == [3, 4, FAT16_EOC]
    assert word(fat, 2*5) == FAT16_EOC
    assert word(fat, 2*6) == FAT16_EOC
    assert g.dataClusters == 6
    # unused clusters are free
    assert fat[2*7:] == bytearray(len(fat) - 14)

def test_fat_media_byte():
    g = calc_geometry(Tree(), {'media_byte': 0xF0})
    assert make_fat(g)[:2] == b'\xF0\xFF'

def test_boot_sector(sample):
    tree, g = sample
    boot = make_boot(g)
    assert len(boot) == 512
    assert boot[:3] == b'\xEB\x3C\x90'
    assert boot[3:11] == b'nos-fat '
    assert boot[0x3E:0x3E+len(nodos_asm_3Eh)] == nodos_asm_3Eh
    assert boot[510] == 0x55 and boot[511] == 0xAA
    b = boot_fat16(bytearray(boot))
    assert b.wBytesPerSector == 512
    assert b.uchSectorsPerCluster == 4
    assert b.wReservedSectors == 1
    assert b.uchFATCopies == 1
    assert b.wMaxRootEntries == 16
    assert b.wTotalSectors == 16358
    assert b.dwTotalSectors == 0
    assert b.uchMediaDescriptor == 0xF8
    assert b.wSectorsPerFAT == 16
    assert (b.wSectorsPerTrack, b.wHeads, b.dwHiddenSectors) == (0x20, 0x40, 0)
    assert b.chPhysDriveNumber == 0x80
    assert b.uchSignature == 0x29
    assert b.dwVolumeID == 0x12345678
    assert b.sVolumeLabel == b'TEST       '
    assert b.sFSType == b'FAT16   '
    assert b.root() == g.root()
    assert b.cl2offset(5) == g.cl2offset(5)
    assert b.clusters() == g.totalClusters

def test_boot_sector_large_volume():
    tree = Tree()
    tree.create('/big', stream_source(iter(()), 40 << 20))
    g = calc_geometry(tree)
    b = boot_fat16(make_boot(g))
    assert b.uchSectorsPerCluster == 32
    assert b.wTotalSectors == 0
    assert b.dwTotalSectors == g.totalSectors

def test_root_table(sample):
    tree, g = sample
    root = make_dirtable(tree, g, 0)
    assert len(root) == 16 * 32
    s = slots(root)
    assert s[0][:11] == b'FILE       '
    assert s[0][0x0C] == 0x08
    assert s[0][0x0B] == 0
    assert word(s[0], 0x1A) == 2
    assert struct.unpack_from('<I', s[0], 0x1C)[0] == 1500
    assert s[1][:11] == b'SUB        '
    assert s[1][0x0B] == ATTR_DIR
    assert word(s[1], 0x1A) == 3
    assert struct.unpack_from('<I', s[1], 0x1C)[0] == 0
    assert root[64:] == bytearray(len(root) - 64)

def test_subdirectory_table(sample):
    tree, g = sample
    table = make_dirtable(tree, g, tree.lookup('/sub'))
    assert len(table) == g.cluster
    dot, dotdot, link = slots(table)[:3]
    assert dot[:11] == b'.          '
    assert word(dot, 0x1A) == 3
    assert dotdot[:11] == b'..         '
    assert word(dotdot, 0x1A) == 0
    assert dot[0x0B] == dotdot[0x0B] == ATTR_DIR
    assert link[:11] == b'LINK       '
    assert word(link, 0x1A) == 2
    assert struct.unpack_from('<I', link, 0x1C)[0] == 1500

def test_dotdot_points_to_parent():
    tree = Tree()
    tree.mkdir('/a')
    b = tree.mkdir('/a/b')
    g = calc_geometry(tree)
    dotdot = slots(make_dirtable(tree, g, b))[1]
    assert word(dotdot, 0x1A) == g.clusters[tree.lookup('/a')]

def test_link_to_directory():
    tree = Tree()
    tree.mkdir('/dir')
    tree.create('/dir/f', b'abc')
    tree.link('/alias', '/dir')
    g = calc_geometry(tree)
    s = slots(make_dirtable(tree, g, 0))
    assert s[1][:11] == b'ALIAS      '
    assert s[1][0x0B] & ATTR_DIR
    assert word(s[1], 0x1A) == word(s[0], 0x1A)
    assert struct.unpack_from('<I', s[1], 0x1C)[0] == 0

def test_long_names_in_table():
    tree = Tree()
    name = 'a really long file name.test'
    tree.create('/' + name, b'')
    tree.create('/README.TXT', b'')
    g = calc_geometry(tree)
    s = slots(make_dirtable(tree, g, 0))
    assert [x[0x0B] for x in s[:5]] == [ATTR_LFN]*3 + [0, 0]
    assert s[3][:11] == b'AREALL~1TES'
    assert FATDirentry.LongName(b''.join(s[:4])) == name
    assert s[4][:11] == b'README  TXT'

def test_aliases_are_unique():
    tree = Tree()
    tree.create('/AREALL~1.TES', b'')
    tree.create('/a really long file name.test', b'')
    tree.create('/a really long file name.test2', b'')
    g = calc_geometry(tree)
    names = [x[:11] for x in slots(make_dirtable(tree, g, 0)) if x[0] and x[0x0B] != ATTR_LFN]
    assert names == [b'AREALL~1TES', b'AREALL~2TES', b'AREALL~3TES']

def test_attributes():
    tree = Tree()
    tree.create('/ro', b'', read_only=True, archive=True)
    tree.create('/hs', b'', hidden=True, system=True)
    g = calc_geometry(tree)
    s = slots(make_dirtable(tree, g, 0))
    assert s[0][0x0B] == ATTR_READONLY | ATTR_ARCHIVE
    assert s[1][0x0B] == ATTR_HIDDEN | ATTR_SYSTEM

def test_timestamps():
    tree = Tree()
    tree.create('/stamped', b'', mtime=datetime(2020, 5, 17, 13, 45, 31, 500000))
    tree.create('/plain', b'')
    g = calc_geometry(tree)
    s = slots(make_dirtable(tree, g, 0))
    date = (40 << 9) | (5 << 5) | 17
    time = (13 << 11) | (45 << 5) | 15
    assert s[0][0x0D] == 150
    assert word(s[0], 0x0E) == word(s[0], 0x16) == time
    assert word(s[0], 0x10) == word(s[0], 0x12) == word(s[0], 0x18) == date
    assert s[1][0x0D:0x1A] == bytearray(13)
    assert FATDirentry.ParseDosDate(date) == (2020, 5, 17)
    assert FATDirentry.ParseDosTime(time) == (13, 45, 30)

def test_default_time():
    tree = Tree()
    tree.create('/plain', b'')
    g = calc_geometry(tree, {'default_time': datetime(1999, 12, 31, 23, 59, 58)})
    s = slots(make_dirtable(tree, g, 0))
    assert word(s[0], 0x18) == FATDirentry.MakeDosDate((1999, 12, 31))
    assert word(s[0], 0x16) == FATDirentry.MakeDosTime((23, 59, 58))

def test_aware_times_are_utc():
    t = datetime(2021, 1, 1, 2, 0, 0, tzinfo=timezone(timedelta(hours=3)))
    slot = FATDirentry.GenRawSlot(b'UTC        ', t=t)
    assert word(slot, 0x16) == FATDirentry.MakeDosTime((23, 0, 0))
    assert word(slot, 0x18) == FATDirentry.MakeDosDate((2020, 12, 31))

def test_time_out_of_range():
    with pytest.raises(FATException):
        FATDirentry.GenRawSlot(b'OLD        ', t=datetime(1979, 12, 31))

def test_directory_padded_to_allocation():
    tree = Tree()
    d = tree.mkdir('/many')
    for i in range(70):
        tree.create('/many/file%d.txt' % i, b'')
    g = calc_geometry(tree)
    table = make_dirtable(tree, g, d)
    assert g.allocation[d] == 2
    assert len(table) == 2 * g.cluster
    assert slots(table)[72][0] == 0
