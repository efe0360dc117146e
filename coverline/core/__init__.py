"""
Core Layer

Configuration, exceptions, logging and time sources shared by every other
layer. Nothing in here performs I/O at import time.
"""
