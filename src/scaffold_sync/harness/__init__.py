"""Upgrade-path regression harness.

Runs many upgrade paths through the update engine in parallel, each in an
isolated project directory, with a per-unit timeout and a disk-space floor.

Public exports
--------------
``UpgradeHarness``, ``UpgradePath``, ``HarnessResult``, ``HarnessOutcome``.
"""

from .runner import HarnessOutcome, HarnessResult, UpgradeHarness, UpgradePath

__all__ = [
    "HarnessOutcome",
    "HarnessResult",
    "UpgradeHarness",
    "UpgradePath",
]
