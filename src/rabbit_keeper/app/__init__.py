"""
A small relay application built on the rabbit_keeper client:
declares the configured topology and logs everything it consumes.
"""
