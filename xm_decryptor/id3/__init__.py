"""
ID3v2 tag package.

Pure Python reading and writing of the tag block at the front of .xm
containers:

- codec: tag block parser/serialiser tolerant of 2-byte language codes
- frames: frame types (opaque, text, language-coded)
- unsynch: unsynchronisation scheme and synchsafe integers
"""
