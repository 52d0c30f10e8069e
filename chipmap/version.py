# chipmap/version.py

__version__ = "1.0.0"

# Bumped whenever a stage's fixed flag set changes.
STAGE_PROTOCOL_VERSION = "1"
