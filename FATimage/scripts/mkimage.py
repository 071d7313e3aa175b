# -*- coding: utf-8 -*-

import sys, os, argparse, logging
from datetime import datetime
from FATimage.FAT import FATException
from FATimage.tree import Tree, copy_tree_in
from FATimage.mkfat import fat16_mkimage
from FATimage.utils import parse_size

DEBUG=int(os.getenv('FATIMAGE_DEBUG', '0'))
from FATimage.debug import log

if DEBUG: logging.basicConfig(level=logging.DEBUG, filename='mkimage.log', filemode='w')



def mkimage(image, base, params={}, verbose=0):
    "Builds a FAT16 image file from the contents of a real directory"
    if not os.path.isdir(base):
        raise FATException('mkimage: source directory "%s" does not exist!' % base)
    tree = Tree()
    callback = None
    if verbose: callback = printn
    copy_tree_in(base, tree, callback, params.get('default_time') is None)
    if DEBUG: log("mkimage: %d entries declared from '%s'", len(tree)-1, base)
    return fat16_mkimage(tree, image, params)

def printn(s): print(s)

def create_parser(parser_create_fn=argparse.ArgumentParser,parser_create_args=None):
    par = parser_create_fn(*(parser_create_args or []),description="Builds a FAT16 image file from the contents of a directory.")
    par.add_argument('image',help="The image file to create",metavar="IMAGE")
    par.add_argument('source',help="The directory whose contents go in the image root",metavar="SRCDIR")
    par.add_argument("-l", "--label", dest="label", help="volume label, up to 11 characters (default: nos-fat)", metavar="LABEL")
    par.add_argument("-s", "--serial", dest="serial", help="volume serial number as 8 hex digits (default: random)", metavar="SERIAL")
    par.add_argument("--fat-copies", dest="fat_copies", type=int, help="set the number of FAT tables (default: 1)", metavar="COPIES")
    par.add_argument("--reserved", dest="reserved_size", type=int, help="reserved sectors before the FAT, boot sector included (default: 1)", metavar="SECTORS")
    par.add_argument("--media-byte", dest="media_byte", help="media descriptor byte in hex (default: F8)", metavar="BYTE")
    par.add_argument("-e", "--extra-space", dest="extra_space", help="free space to leave in the volume. Accepts 'k', 'm' and 'g' postfix for Kibibytes, Mebibytes and Gibibytes.", metavar="SIZE")
    par.add_argument("-t", "--time", dest="time", help="stamp every entry with this ISO date and time instead of the source ones", metavar="TIME")
    par.add_argument("-j", "--workers", dest="workers", type=int, help="parallel writers (default: 4)", metavar="N")
    par.add_argument("-v", "--verbose", action="store_true", dest="verbose", help="list the items copied and print a summary")
    return par

def call(args):
    params = {}
    try:
        if args.label: params['label'] = args.label
        if args.serial: params['serial'] = int(args.serial, 16)
        if args.fat_copies is not None: params['fat_copies'] = args.fat_copies
        if args.reserved_size is not None: params['reserved_size'] = args.reserved_size
        if args.media_byte: params['media_byte'] = int(args.media_byte, 16)
        if args.extra_space: params['extra_space'] = parse_size(args.extra_space)
        if args.time: params['default_time'] = datetime.fromisoformat(args.time)
        if args.workers is not None: params['workers'] = args.workers
    except ValueError as e:
        print("mkimage error: bad option value (%s)" % e)
        sys.exit(1)
    params['show_info'] = args.verbose
    try:
        mkimage(args.image, args.source, params, args.verbose)
    except (FATException, OSError) as e:
        print("mkimage error: %s" % e)
        sys.exit(1)

if __name__ == '__main__':
    par=create_parser()
    args = par.parse_args()
    call(args)
