"""
Line tracer - entry point.

Opens the camera, runs the line pipeline on every frame and streams the
steering error to the car over BLE (or a WebSocket bridge).

Usage:
  python main.py                              # config.py defaults
  python main.py --camera 1 --mirror --preview
  python main.py --link websocket --bridge-url ws://127.0.0.1:8765/uart --autostart
  python main.py --serve                      # control server on config port
"""

import argparse
import logging
import time

import config
from linetracer.processTracer import processTracer
from linetracer.utils.logger import setup_logging

logger = logging.getLogger("linetracer")
LOG = {"component": "Main"}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Vision line tracer")
    parser.add_argument("--camera", type=str, default=None,
                        help="Capture device index, path or URL")
    parser.add_argument("--link", choices=["ble", "websocket"], default=None,
                        help="Link transport")
    parser.add_argument("--bridge-url", type=str, default=None,
                        help="WebSocket bridge URL (with --link websocket)")
    parser.add_argument("--ble-address", type=str, default=None,
                        help="Connect to this BLE address instead of scanning by name")
    parser.add_argument("--threshold", type=int, default=None,
                        help="Brightness threshold 0-255")
    parser.add_argument("--light-line", action="store_true",
                        help="Track a light line on a dark floor")
    parser.add_argument("--mirror", action="store_true",
                        help="Undo a mirrored camera feed")
    parser.add_argument("--preview", action="store_true",
                        help="Open the OpenCV preview window")
    parser.add_argument("--serve", action="store_true",
                        help="Run the control server (blocks until Ctrl-C)")
    parser.add_argument("--autostart", action="store_true",
                        help="Connect the link and start tracking right away")
    parser.add_argument("--log-level", type=str, default=None)
    return parser.parse_args(argv)


def camera_device(value):
    if value is None:
        return None
    return int(value) if value.isdigit() else value


def build_overrides(args):
    return {
        "CAMERA_DEVICE": camera_device(args.camera),
        "LINK_TYPE": args.link,
        "BRIDGE_URL": args.bridge_url,
        "BLE_ADDRESS": args.ble_address,
        "THRESHOLD": args.threshold,
        "LINE_POLARITY": "light" if args.light_line else None,
        "MIRROR_FEED": True if args.mirror else None,
        "SHOW_PREVIEW": True if args.preview else None,
    }


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.log_level or config.LOG_LEVEL)

    tracer = processTracer.from_config(config, logger=logger, **build_overrides(args))
    tracer.start()

    try:
        if args.autostart:
            state = tracer.connect().result(timeout=config.CONNECT_TIMEOUT + 5)
            logger.info("Link: %s", state.value, extra=LOG)
            tracer.start_tracking()

        if args.serve:
            from controlserver.server import run_server
            run_server(tracer)
        else:
            logger.info("Running, press Ctrl-C to quit", extra=LOG)
            while True:
                time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("Interrupted", extra=LOG)
    finally:
        tracer.stop()


if __name__ == "__main__":
    main()
