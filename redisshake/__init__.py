"""Redis RDB file, DUMP payload and RESP protocol reading and writing."""

__version__ = "0.1.0"