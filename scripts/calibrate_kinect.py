#!/usr/bin/env python3
"""Calibrate a Kinect depth/IR + RGB pair and write registered depth images."""

from __future__ import annotations

import sys

from kinect_calib.cli import main


if __name__ == "__main__":
    sys.exit(main())
