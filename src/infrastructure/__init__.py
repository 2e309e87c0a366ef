# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Infrastructure layer for external service integrations.

This package contains:
- Cache (Redis client)
- Storage (learner mastery and knowledge graph persistence)
- Background processing (in-process dispatcher, Dramatiq actors)
"""
