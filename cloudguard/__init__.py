"""CloudGuard - safety coordination for cloud resource deletion.

Cross-process resource locks, an atomically updated state document,
dependency-aware deletion planning and bounded error recovery.
"""

__version__ = "0.1.0"
