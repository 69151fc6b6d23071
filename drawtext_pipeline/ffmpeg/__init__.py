"""Encoder boundary: filter text, command parsing, batching and execution.

WHY: Everything that knows about ffmpeg's argument conventions, its filter
mini-language, or its process lifecycle lives here, so the core package
can stay pure.

HOW:
  drawtext.py  — FilterGraph <-> drawtext filter text
  command.py   — command string <-> ParsedCommand
  scheduler.py — batching decision and chained batch plans
  fonts.py     — per-platform font resolution
  executor.py  — one encoder process per batch, progress, timeouts
  audit.py     — JSON and text audit logs
  runner.py    — whole renders: direct attempt, fallback, cleanup

RULES:
- Text is produced from the IR here and nowhere else
- Only executor.py spawns processes
"""
