"""
Lifecycle Toolkit Examples

Available Examples:
------------------

cascade_example.py
    Cascading soft delete, restore, cascade audit and retention sweep
    over an in-memory workspace/project/task graph.

Running Examples:
----------------

    python examples/cascade_example.py
"""
