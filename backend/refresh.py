"""
Run one hazard refresh cycle: fetch the Han River feeds, fuse them and write
the hazard sites to the configured store.

Usage:
    python refresh.py [--env production]
"""
import argparse
import json
import logging
import sys

from config import config, configure_logging
from services.hazard_fusion_service import HazardFusionService
from services.hazard_store import create_hazard_store

logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Fuse Han River flood feeds into hazard sites")
    parser.add_argument('--env', default='default', choices=sorted(config))
    args = parser.parse_args(argv)

    cfg = config[args.env]
    configure_logging(cfg.LOG_LEVEL)

    store = create_hazard_store(cfg)
    report = HazardFusionService.from_config(cfg, store).refresh()

    print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))

    # Non-zero exit only when every feed failed
    if report.feed_results and report.success_count == 0:
        logger.error("All hazard feeds unavailable")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
