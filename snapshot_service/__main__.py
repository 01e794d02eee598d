# snapshot_service/__main__.py
"""Run the snapshot service: python -m snapshot_service"""

from snapshot_service.cli.snapshots import main

if __name__ == "__main__":
    main(["run"])
