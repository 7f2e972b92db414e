# -*- coding: utf-8 -*-
# Lumen: Tuning the primaries of spectrally programmable light engines.
#
# Copyright (c) 2026 opticsWolf
#
# SPDX-License-Identifier: LGPL-3.0-or-later

"""
Project metadata for Lumen.

Corrected directions record ``__version__`` in their provenance so that a
stored correction can be traced back to the code that produced it.
"""

from typing import Final, Tuple

__title__: Final[str] = "Lumen"
__summary__: Final[str] = (
    "Measurement-in-the-loop correction of light engine primaries: "
    "linear device model, bounded estimators and a correction controller."
)
__version__: Final[str] = "0.1.0"
__author__: Final[str] = "opticsWolf"
__license__: Final[str] = "LGPL-3.0-or-later"
__copyright__: Final[str] = "Copyright (c) 2026 opticsWolf"
__url__: Final[str] = "https://github.com/opticsWolf/lumen"


def version_info() -> Tuple[int, ...]:
    """``__version__`` as a tuple of ints, e.g. (0, 1, 0)."""
    return tuple(int(part) for part in __version__.split("."))


def metadata_summary() -> dict[str, str]:
    return {
        "title": __title__,
        "summary": __summary__,
        "version": __version__,
        "author": __author__,
        "license": __license__,
        "url": __url__,
    }
