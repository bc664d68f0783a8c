# Copyright (c)
# SPDX-License-Identifier: MIT
"""``python -m hello_api`` entrypoint."""

from hello_api.main import run

if __name__ == "__main__":  # pragma: no cover
    run()
