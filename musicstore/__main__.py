import argparse
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from loguru import logger

from musicstore.app import create_app
from musicstore.config import MusicstoreConfig, find_config


def setup_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.configure(extra={"store": "-"})
    logger.add(
        sys.stderr,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[store]: <8} | {message}",
    )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="musicstore")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--dry-run", action="store_true", help="print config and exit")
    parser.add_argument("--cors", action="store_true", help="enable cors")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    load_dotenv()
    setup_logging(args.log_level.upper())

    cfg = MusicstoreConfig.load(find_config(args.config))
    logger.info("config loaded.")
    cfg.write(sys.stdout)
    if args.dry_run:
        return 0

    logger.info("starting musicstore...")
    app = create_app(cfg, cors=args.cors)
    host, port = cfg.listen_host_port
    uvicorn.run(app, host=host, port=port, log_level=args.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
