"""treehash - concurrent content fingerprints for directory trees.

Walks a directory tree, hashes every regular file with SHA-1 and appends
one ``path,hexdigest,size`` line per file to an output log.
"""

__version__ = "0.1.0"
