"""Core IR, text sanitizing, word grouping and overlay building.

WHY: The core package holds the pure, process-free half of the pipeline:
everything from timed words to a FilterGraph. Nothing here touches the
filesystem or spawns processes.

HOW: ir.py defines the data structures, sanitizer.py cleans caption text,
grouper.py forms caption chunks, builder.py turns chunks into overlay
instructions.

RULES:
- IR dataclasses are the contract between building and execution
- All functions are deterministic and side-effect free
"""
