# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Core package for the dropout risk pipeline.

This package contains the core business logic and shared utilities:
- config: Application configuration and settings
- exceptions: Pipeline exception hierarchy
- risk: Factor scoring, combination, trend and the recalculation service
- context: Construction of the pipeline's collaborators
"""
