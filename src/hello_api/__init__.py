# Copyright (c)
# SPDX-License-Identifier: MIT
"""Hello API: boilerplate HTTP service with structured logging and request validation."""

__version__ = "1.0.0"
