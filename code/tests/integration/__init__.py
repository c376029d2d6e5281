"""Integration tests against real capture hardware.

These need root, ffmpeg and the v4l2loopback module, and are skipped unless
CAPBENCH_LOOPBACK_TESTS=1 is set.
"""
