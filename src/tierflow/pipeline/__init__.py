"""Tiered task routing pipeline.

A batch of files enters the first tier as one origin task per file (or per chunk when
a chunking engine is attached). Every tier owns an agent pool and a FIFO input queue;
its scheduling unit greedily pairs queued tasks with idle agents by match score and
hands finished work to the next tier as a new task that depends on the finished one.
The last tier closes a chain; the batch resolves once every chain has closed.
"""
