"""Echo mastery engine.

Knowledge-graph-grounded mastery tracking: turns conversational turns into
decaying, spaced-repetition-scheduled knowledge about what a learner does
and does not understand.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
