#!/usr/bin/env python3
"""
FetchTube server v1.0.0 — Main entry point.
Serves the download API for the mobile client.
"""

import sys
import os
import shutil
import logging
import argparse
import traceback
from pathlib import Path
from datetime import datetime

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fetchtube.core.config import AppConfig, default_config_path
from fetchtube.core.constants import APP_NAME, APP_VERSION

logger = logging.getLogger("fetchtube")


def setup_logging(log_dir: Path, level: int = logging.INFO) -> Path:
    """Log to <log_dir>/server.log and to stderr."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "server.log"
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )
    return log_file


def check_prerequisites(config: AppConfig):
    """yt-dlp is required; ffprobe only powers the quality check."""
    if not shutil.which(config.ytdlp_path):
        logger.error("yt-dlp not found (%s). PATH = %s",
                     config.ytdlp_path, os.environ.get("PATH", ""))
        print("Missing required tool: yt-dlp (install with: pip install yt-dlp)",
              file=sys.stderr)
        sys.exit(1)
    logger.info("yt-dlp found at: %s", shutil.which(config.ytdlp_path))

    if shutil.which(config.ffprobe_path):
        logger.info("ffprobe found at: %s", shutil.which(config.ffprobe_path))
    else:
        logger.warning("ffprobe not found (%s): quality checks will report 'unknown'",
                       config.ffprobe_path)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=f"{APP_NAME} download server")
    parser.add_argument("--config", type=Path, default=None,
                        help="Path to config.json (default: %s)" % default_config_path())
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--output-root", default=None)
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--save-config", action="store_true",
                        help="Write the effective settings back to the config file")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    overrides = {}
    if args.host:
        overrides['host'] = args.host
    if args.port:
        overrides['port'] = args.port
    if args.output_root:
        overrides['output_root'] = args.output_root
    config = AppConfig(args.config, overrides=overrides)
    if args.save_config:
        config.save()

    log_file = setup_logging(config.log_dir, logging.DEBUG if args.debug else logging.INFO)

    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("Project root: %s", PROJECT_ROOT)
    logger.info("Config: %s", config.path)
    logger.info("Output root: %s", config.output_root)
    logger.info("Log file: %s", log_file)
    logger.info("=" * 60)

    try:
        check_prerequisites(config)
        config.output_root.mkdir(parents=True, exist_ok=True)

        import uvicorn
        from fetchtube.server.api import create_app

        uvicorn.run(create_app(config=config),
                    host=config.get('host'), port=config.get('port'),
                    log_config=None)
    except Exception as e:
        logger.critical("Fatal error: %s: %s\n%s", type(e).__name__, e, traceback.format_exc())
        sys.exit(1)


if __name__ == "__main__":
    main()
