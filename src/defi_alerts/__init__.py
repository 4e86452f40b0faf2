"""DeFi portfolio alert engine.

Scans reward, leveraged-position and governance snapshots, keeps one
deduplicated alert per triggering condition, and delivers pending alerts
across independent channels.
"""

__version__ = "0.1.0"
