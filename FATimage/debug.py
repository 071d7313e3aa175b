import logging

#~ DEBUG bits (turn on logging in a specified module):
#~ 0=geometry
#~ 1=FAT, directory tables, boot sector
#~ 2=hex dumps of serialized regions
#~ 3=disk writer, media

def log(*a):
    logging.getLogger('FATimage').debug(*a)
