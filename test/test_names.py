# -*- coding: utf-8 -*-

import pytest
from FATimage.FAT import FATDirentry, FATException, ATTR_LFN
from FATimage.tree import Tree


def reference_checksum(shortname):
    "Rotate right and add, seeded with the first name byte"
    csum = shortname[0]
    for b in shortname[1:]:
        csum = ((((csum & 1) << 7) | (csum >> 1)) + b) & 0xFF
    return csum


@pytest.mark.parametrize("name,count", [
    ('README.TXT', 0),
    ('readme.txt', 0),
    ('ReadMe.txt', 0),
    ('Makefile', 0),
    ('ldlinux.c32', 0),
    ('.', 0),
    ('..', 0),
    ('verylongname.txt', 2),
    ('file.html', 1),
    ('a b.txt', 1),
    ('.bashrc', 1),
    ('archive.tar.gz', 2),
    ('abcdefghi.txt', 1),
    ('a really long file name.test', 3),
])
def test_lfn_count(name, count):
    assert FATDirentry.lfn_count(name) == count

def test_lfn_count_uses_utf16_units():
    # U+1F600 takes two UTF-16 code units
    assert FATDirentry.lfn_count('\U0001F600' * 7) == 2
    assert FATDirentry.lfn_count('caf\xe9.txt') == 1


@pytest.mark.parametrize("name,short,flags", [
    ('readme.txt', b'README  TXT', 0x18),
    ('README.TXT', b'README  TXT', 0),
    ('README.txt', b'README  TXT', 0x10),
    ('readme.TXT', b'README  TXT', 0x08),
    ('ReadMe.Txt', b'README  TXT', 0),
    ('makefile', b'MAKEFILE   ', 0x08),
    ('BOOT', b'BOOT       ', 0),
    ('.', b'.          ', 0),
    ('..', b'..         ', 0),
])
def test_short_names(name, short, flags):
    assert FATDirentry.GenRawShortName(name) == (short, flags)

@pytest.mark.parametrize("name,id,short", [
    ('a really long file name.test', 1, b'AREALL~1TES'),
    ('a really long file name.test', 12, b'AREAL~12TES'),
    ('.bashrc', 1, b'BASHRC~1   '),
    ('archive.tar.gz', 1, b'ARCHIV~1GZ '),
    ('caf\xe9 au lait.txt', 1, b'CAF_AU~1TXT'),
    ('ab.html', 1, b'AB~1    HTM'),
])
def test_short_aliases(name, id, short):
    assert FATDirentry.GenRawShortName(name, id) == (short, 0)

def test_checksum_matches_rotate_and_add():
    for short in (b'AREALL~1TES', b'README  TXT', b'BASHRC~1   ', b'\xff' * 11):
        assert FATDirentry.Checksum(short) == reference_checksum(short)

def test_long_file_name_slots():
    name = 'a really long file name.test'
    short = FATDirentry.GenRawShortName(name)[0]
    slots = FATDirentry.GenRawLfnSlots(name, short)
    assert len(slots) == 3 * 32
    assert [slots[i] for i in range(0, 96, 32)] == [0x43, 2, 1]
    csum = reference_checksum(short)
    for i in range(0, 96, 32):
        slot = slots[i:i+32]
        assert slot[0x0B] == ATTR_LFN
        assert slot[0x0C] == 0
        assert slot[0x0D] == csum
        assert slot[0x1A:0x1C] == b'\x00\x00'
    # first slot holds the name tail: 'st', a NULL, then 0xFFFF padding
    assert slots[1:5] == 'st'.encode('utf_16_le')
    assert slots[5:7] == b'\x00\x00'
    assert slots[7:11] == b'\xff' * 4
    assert slots[14:26] == b'\xff' * 12
    assert slots[28:32] == b'\xff' * 4
    # last slot holds the name head, split at 0x01, 0x0E and 0x1C
    assert slots[64+1:64+11] == 'a rea'.encode('utf_16_le')
    assert slots[64+14:64+26] == 'lly lo'.encode('utf_16_le')
    assert slots[64+28:64+32] == 'ng'.encode('utf_16_le')

def test_full_slot_has_no_terminator():
    name = 'abcdefghi.txt'
    slots = FATDirentry.GenRawLfnSlots(name, FATDirentry.GenRawShortName(name)[0])
    assert len(slots) == 32
    assert slots[0] == 0x41
    assert b'\xff\xff' not in slots
    assert slots[28:32] == 'xt'.encode('utf_16_le')

@pytest.mark.parametrize("name", [
    'a really long file name.test',
    'Mixed Case Name With Spaces.Html',
    'abcdefghi.txt',
    'abcdefghijklmnopqrstuvwxyz',
    'Gr\xfc\xdfe aus K\xf6ln.txt',
    '\U0001F600 smile.txt',
    'x' * 255,
])
def test_long_names_round_trip(name):
    short = FATDirentry.GenRawShortName(name)[0]
    assert len(short) == 11
    assert b' ' not in short.rstrip()
    slots = FATDirentry.GenRawLfnSlots(name, short)
    assert len(slots) == 32 * FATDirentry.lfn_count(name)
    entry = FATDirentry.GenRawSlot(short)
    assert FATDirentry.LongName(slots + entry) == name
    csums = set([slots[i+0x0D] for i in range(0, len(slots), 32)])
    assert csums == set([FATDirentry.Checksum(short)])

def test_too_long_name():
    with pytest.raises(FATException):
        FATDirentry.GenRawLfnSlots('x' * 256, b'XXXXXX~1   ')

def test_names_starting_with_a_ring():
    name = '\xe5r.txt'
    assert FATDirentry.IsValidDosName(name, lfn=True)
    assert FATDirentry.lfn_count(name) == 1
    short = FATDirentry.GenRawShortName(name)[0]
    assert short == b'_R~1    TXT'
    slots = FATDirentry.GenRawLfnSlots(name, short)
    assert FATDirentry.LongName(slots + FATDirentry.GenRawSlot(short)) == name
    tree = Tree()
    assert tree[tree.create('/' + name, b'abc')].name == name
