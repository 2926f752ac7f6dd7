"""Application and Infrastructure Layers.

Services that orchestrate domain logic and adapters that perform I/O.
"""
