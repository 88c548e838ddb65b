import os
import sys
import argparse
import logging
import logging.handlers

from tilestream import tsconfig


def setuplogs():
    CFG = tsconfig.CFG
    log_file = getattr(CFG.general, 'log_file', '') or os.path.join(
        os.path.expanduser("~"), ".tilestream-data", "logs", "tilestream.log"
    )
    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.isdir(log_dir):
        os.makedirs(log_dir)

    file_log_level_str = getattr(CFG.general, 'file_log_level', 'DEBUG').upper()
    console_log_level_str = getattr(CFG.general, 'console_log_level', 'INFO').upper()

    # TS_DEBUG forces DEBUG everywhere (development)
    if os.environ.get('TS_DEBUG'):
        file_log_level_str = 'DEBUG'
        console_log_level_str = 'DEBUG'

    file_log_level = getattr(logging, file_log_level_str, logging.DEBUG)
    console_log_level = getattr(logging, console_log_level_str, logging.INFO)

    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_file,
        maxBytes=10485760,
        backupCount=5
    )
    file_handler.setLevel(file_log_level)
    file_handler.setFormatter(file_formatter)

    handlers = [file_handler]
    if sys.stdout is not None:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(console_log_level)
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    logging.basicConfig(
        level=min(file_log_level, console_log_level),
        handlers=handlers
    )

    log = logging.getLogger(__name__)
    log.info(f"Setup logs: {log_dir}")
    log.info(f"File log level: {file_log_level_str}, Console log level: {console_log_level_str}")


def load_config(argv=None):
    """Bind tsconfig.CFG to --config early, so logging reads the chosen file."""
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("-c", "--config")
    args, _ = parser.parse_known_args(argv)
    if args.config:
        tsconfig.CFG = tsconfig.TSConfig(args.config)


def run(argv=None):
    load_config(argv)
    setuplogs()
    from tilestream import streamer
    return streamer.main(argv)


if __name__ == "__main__":
    sys.exit(run())
