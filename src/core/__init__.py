# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Core package for the mastery engine.

This package contains the core business logic:
- config: Application configuration and settings
- auth: Identity resolution for learner-scoped calls
- knowledge: Knowledge graph model, merge and ingestion
- learning: Signal detection, mastery updates, decay and the analysis pipeline
- intelligence: LLM client used by the graph extraction collaborator
"""
