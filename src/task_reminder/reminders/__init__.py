"""
Reminder engine.

- scanner.py: one scan tick (claim, notify, deliver, retry)
- scheduler.py: the periodic loop around the scanner
"""
