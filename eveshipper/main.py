"""Entry point for the eveshipper agent."""

import logging
import signal
import sys
import threading

import requests

from eveshipper.config import Config, load_config
from eveshipper.errors import ConfigError, EveShipperError
from eveshipper.filters import AutoArchiveFilter, MetadataFilter, TagsFilter
from eveshipper.processor import EveFileProcessor
from eveshipper.sinks import FileSink, HttpSink, StdoutSink

logger = logging.getLogger(__name__)


def build_sink(config: Config):
    if config.output == "http":
        sink = HttpSink(
            config.server_url,
            username=config.server_username,
            password=config.server_password,
            verify=config.verify_tls,
        )
        try:
            version = sink.get_version()
            logger.info("Connected to EveBox version %s", version.get("version"))
        except (requests.RequestException, ValueError) as err:
            logger.error("Failed to query server for version, will continue: %s", err)
        return sink
    if config.output == "file":
        return FileSink(config.output_file)
    return StdoutSink()


def build_processor(config: Config, sink) -> EveFileProcessor:
    processor = EveFileProcessor(
        config.input_file,
        sink,
        bookmark_directory=config.bookmark_directory,
        bookmark=config.bookmark,
        end=config.end,
        oneshot=config.oneshot,
        batch_size=config.batch_size,
        poll_interval=config.poll_interval,
        retry_interval=config.retry_interval,
        stats_interval=config.stats_interval,
        custom_fields=config.custom_fields,
        watch=config.watch,
    )
    processor.add_filter(TagsFilter())
    processor.add_filter(MetadataFilter(config.input_file))
    processor.add_filter(AutoArchiveFilter())
    return processor


def main(argv: list[str] | None = None) -> int:
    try:
        config = load_config(argv)
    except ConfigError as err:
        print(f"error: {err}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        stream=sys.stderr,
    )

    sink = build_sink(config)
    processor = build_processor(config, sink)
    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()
        processor.request_stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("Starting eveshipper - input=%s, output=%s, bookmark=%s",
                config.input_file, config.output, config.bookmark)

    try:
        if config.oneshot:
            processor.run()
        else:
            processor.start()
            while not shutdown_event.is_set() and processor.running:
                shutdown_event.wait(1.0)
            died = not shutdown_event.is_set()
            processor.stop()
            if died:
                logger.error("Processor for %s exited unexpectedly, %d events committed",
                             config.input_file, processor.total)
                return 1
    except (EveShipperError, OSError) as err:
        logger.error("%s", err)
        return 1
    finally:
        if isinstance(sink, HttpSink):
            sink.close()

    logger.info("Shipped %d events from %s", processor.total, config.input_file)
    return 0


if __name__ == "__main__":
    sys.exit(main())
