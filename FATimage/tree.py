# -*- coding: utf-8 -*-

#
# In-memory description of a volume: files, directories and links declared
# in order, kept in an arena and addressed by their stable index.
#

import os
from datetime import datetime
from FATimage.FAT import FATException, UnresolvedLinkTarget, FATDirentry
from FATimage.debug import log
DEBUG=int(os.getenv('FATIMAGE_DEBUG', '0'))

FILE = 'file'
DIR = 'directory'
LINK = 'link'


class Entry(object):
    "A file, directory or link of the volume"
    def __init__ (self, name, kind, parent=None, source=None, target=None, mtime=None, read_only=False, hidden=False, system=False, archive=False):
        self.name = name # component name, case preserved
        self.kind = kind
        self.parent = parent # index of the parent directory, None for root
        self.children = [] # indexes, in declaration (and disk) order
        self.source = source # content of a file
        self.target = target # absolute path a link refers to
        self.mtime = mtime
        self.read_only = read_only
        self.hidden = hidden
        self.system = system
        self.archive = archive

    def __str__ (self):
        return "%s '%s'" % (self.kind, self.name)

    def isdir(self): return self.kind == DIR

    def islink(self): return self.kind == LINK


def normpath(path):
    "Returns the components of an absolute volume path"
    return [p for p in path.replace('\\', '/').split('/') if p]


class Tree(object):
    """The volume contents. Index 0 is the unnamed root directory; every other
    entry must be declared after its parent directory."""
    def __init__ (self):
        self._entries = [Entry('', DIR)]
        self._index = {'': 0} # { lowercase path: index }

    def __len__ (self):
        return len(self._entries)

    def __getitem__ (self, index):
        return self._entries[index]

    def __iter__ (self):
        "Iterates over (index, entry) in declaration order, root excluded"
        for i in range(1, len(self._entries)):
            yield i, self._entries[i]

    def path(self, index):
        "Returns the absolute path of an entry"
        parts = []
        while index:
            e = self._entries[index]
            parts.append(e.name)
            index = e.parent
        return '/' + '/'.join(reversed(parts))

    def lookup(self, path):
        "Returns the index of an already declared path, or None"
        return self._index.get('/'.join(normpath(path)).lower())

    def resolve(self, index):
        "Follows a link chain up to a file or directory index"
        while self._entries[index].islink():
            target = self._entries[index].target
            i = self.lookup(target)
            # targets are declared before their links, so chains can't loop
            if i is None or i >= index:
                raise UnresolvedLinkTarget("Link '%s' target '%s' not found" % (self.path(index), target))
            index = i
        return index

    def add(self, path, kind, **kwargs):
        "Declares a new entry at absolute path, returning its index"
        parts = normpath(path)
        if not parts:
            raise FATException("Can't redeclare root directory")
        name = parts[-1]
        if name in ('.', '..') or not FATDirentry.IsValidDosName(name, lfn=True):
            raise FATException("Invalid name '%s'" % name)
        if len(name.encode('utf_16_le')) > 510:
            raise FATException("Name '%s' is >255 characters!" % name)
        parent = self._index.get('/'.join(parts[:-1]).lower())
        if parent is None or not self._entries[parent].isdir():
            raise FATException("Parent directory of '%s' was not declared" % path)
        key = '/'.join(parts).lower()
        if key in self._index:
            raise FATException("'%s' was already declared" % path)
        index = len(self._entries)
        self._entries.append(Entry(name, kind, parent, **kwargs))
        self._entries[parent].children.append(index)
        self._index[key] = index
        if DEBUG&1: log("Declared %s #%d at '%s'", kind, index, path)
        return index

    def mkdir(self, path, **kwargs):
        "Declares a directory"
        return self.add(path, DIR, **kwargs)

    def create(self, path, source=b'', **kwargs):
        "Declares a file with its content source"
        return self.add(path, FILE, source=source, **kwargs)

    def link(self, path, target, **kwargs):
        """Declares a link sharing the clusters of target, an absolute path that
        must be declared before the link"""
        if self.lookup(target) is None:
            raise UnresolvedLinkTarget("Link '%s' target '%s' not found" % (path, target))
        return self.add(path, LINK, target=target, **kwargs)

    def opendir(self, path='/'):
        "Returns a Dirbuilder for an already declared directory"
        index = self.lookup(path)
        if index is None or not self._entries[index].isdir():
            raise FATException("Directory '%s' was not declared" % path)
        return Dirbuilder(self, index)


class Dirbuilder(object):
    "Declares entries inside one directory of a Tree"
    def __init__ (self, tree, index):
        self.tree = tree
        self.index = index
        self.path = tree.path(index)

    def __str__ (self):
        return "Dirbuilder for '%s'" % self.path

    def _join(self, name):
        return self.path.rstrip('/') + '/' + name

    def mkdir(self, name, **kwargs):
        "Declares a subdirectory and returns its Dirbuilder"
        return Dirbuilder(self.tree, self.tree.mkdir(self._join(name), **kwargs))

    def create(self, name, source=b'', **kwargs):
        "Declares a file, returning its index"
        return self.tree.create(self._join(name), source, **kwargs)

    def link(self, name, target, **kwargs):
        "Declares a link to an absolute path, returning its index"
        return self.tree.link(self._join(name), target, **kwargs)


def copy_tree_in(base, dest, callback=None, times=True):
    """Declares recursively files and directories under real 'base' path into
    'dest', a Tree or Dirbuilder, calling callback function if provided and
    preserving modification times if desired. Symbolic links pointing inside
    base become links when their target was declared already."""
    if isinstance(dest, Tree):
        dest = dest.opendir()
    base = os.path.realpath(base)

    def walk(src, target):
        for name in sorted(os.listdir(src)):
            path = os.path.join(src, name)
            st = os.stat(path)
            mtime = None
            if times:
                mtime = datetime.fromtimestamp(st.st_mtime)
                if mtime.year < 1980: mtime = None
            if os.path.islink(path):
                real = os.path.realpath(path)
                if real.startswith(base + os.sep):
                    volpath = dest.path.rstrip('/') + '/' + os.path.relpath(real, base).replace(os.sep, '/')
                    if target.tree.lookup(volpath) is not None:
                        if callback: callback(path[len(base)+1:])
                        target.link(name, volpath, mtime=mtime)
                        continue
            if callback: callback(path[len(base)+1:])
            if os.path.isdir(path):
                walk(path, target.mkdir(name, mtime=mtime))
            else:
                target.create(name, path, mtime=mtime)

    walk(base, dest)

