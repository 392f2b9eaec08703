# entry.py

import argparse
import logging
import signal
import sys
from pathlib import Path

from PyQt5.QtCore import QCoreApplication, QTimer

from app.controllers import Controller
from core.config import CameraFormat, load_config, save_config
from core.constants import DEFAULT_CONFIG_FILE, UPDATE_INTERVAL_MS


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Camera spectrometer: capture, process and broadcast spectra.")
    parser.add_argument("--config", type=Path, default=Path(DEFAULT_CONFIG_FILE), help="JSON config file.")
    parser.add_argument("--camera", type=int, help="Camera index.")
    parser.add_argument("--size", help="Frame size WIDTHxHEIGHT.")
    parser.add_argument("--fps", type=int, help="Frame rate.")
    parser.add_argument("--listen", help="Feed server address HOST:PORT.")
    parser.add_argument("--no-feed", action="store_true", help="Do not start the TCP feed server.")
    parser.add_argument("--verbose", action="store_true", help="Debug logging.")
    return parser.parse_args(argv)


def apply_args(config, args):
    fmt = config.camera_format
    if args.camera is not None:
        config.camera_id = args.camera
    if args.size:
        width, height = (int(v) for v in args.size.lower().split("x"))
        fmt = CameraFormat(width=width, height=height, fourcc=fmt.fourcc, frame_rate=fmt.frame_rate)
    if args.fps:
        fmt = CameraFormat(width=fmt.width, height=fmt.height, fourcc=fmt.fourcc, frame_rate=args.fps)
    config.camera_format = fmt
    if args.listen:
        host, port = args.listen.rsplit(":", 1)
        config.feed_config.host = host
        config.feed_config.port = int(port)
    if args.no_feed:
        config.feed_config.enabled = False
    return config


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose)
    config = apply_args(load_config(args.config), args)

    app = QCoreApplication(sys.argv[:1])
    ctrl = Controller(config)
    ctrl.start()
    ctrl.start_stream()

    timer = QTimer()
    timer.timeout.connect(ctrl.update)
    timer.start(UPDATE_INTERVAL_MS)

    signal.signal(signal.SIGINT, lambda *_: app.quit())
    # let the Python interpreter see SIGINT between Qt events
    wake = QTimer()
    wake.timeout.connect(lambda: None)
    wake.start(200)

    code = app.exec_()
    timer.stop()
    ctrl.shutdown()
    save_config(ctrl.config, args.config)
    return code


if __name__ == "__main__":
    sys.exit(main())
