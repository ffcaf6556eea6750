import argparse
import logging
import sys

from schoolstats.core.app import PipelineApp


def setup_basic_logging():
    """Setup basic stdout logging before config is loaded"""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        ))
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.DEBUG)
        logging.debug("Basic logging initialized")


def main():
    setup_basic_logging()

    parser = argparse.ArgumentParser(description='School statistics pipeline')
    parser.add_argument('--config', default="config.yaml",
                        help='Path to config file (default: ./config.yaml, created if missing)')
    args = parser.parse_args()

    app = PipelineApp(config_path=args.config)
    app.run()


if __name__ == "__main__":
    main()
